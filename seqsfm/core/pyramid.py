#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Pyramid scoring of the spatial distribution of features in a view.

Used for next-best-view selection: a view whose reconstructed tracks are
spread over the whole image scores higher than one with the same number of
tracks packed in a corner. Inspired by Schonberger & Frahm, "Structure-from-
Motion Revisited" (CVPR 2016), with weights favouring coarse levels.

Author: James Wei
Date: 2024-02-14
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional, Iterable

from seqsfm.core.features import FeatureStore
from seqsfm.core.tracks import TrackStore

logger = logging.getLogger(__name__)


def compute_pyramid_weights(pyramid_base: int, pyramid_depth: int) -> Tuple[int, ...]:
    """Weight of each pyramid level, coarsest first.

    Level ``l`` (1-based) splits each image axis into ``base ** l`` cells and
    weighs ``base ** (depth - l)``.
    """
    return tuple(pyramid_base ** (pyramid_depth - level) for level in range(1, pyramid_depth + 1))


def compute_pyramid_max_score(pyramid_base: int, pyramid_depth: int) -> int:
    """Score of a view with every cell of every level occupied."""
    weights = compute_pyramid_weights(pyramid_base, pyramid_depth)
    return sum(weight * (pyramid_base ** level) ** 2
               for level, weight in zip(range(1, pyramid_depth + 1), weights))


class ViewScorer:
    """Pyramid-based spatial distribution score of a view."""

    def __init__(self,
                 features: FeatureStore,
                 tracks: TrackStore,
                 image_size_by_view: Dict[int, Tuple[int, int]],
                 pyramid_base: int = 2,
                 pyramid_depth: int = 5,
                 threshold_ratio: float = 0.05):
        """Initialize view scorer.

        Args:
            features: Feature store (borrowed)
            tracks: Track store (borrowed)
            image_size_by_view: View ID -> (width, height)
            pyramid_base: Branching factor of the pyramid
            pyramid_depth: Number of pyramid levels
            threshold_ratio: Fraction of the maximum score a view needs to be
                considered connected
        """
        if pyramid_base < 2 or pyramid_depth < 1:
            raise ValueError(f"Invalid pyramid (base={pyramid_base}, depth={pyramid_depth})")

        self.features = features
        self.tracks = tracks
        self.image_size_by_view = image_size_by_view
        self.pyramid_base = pyramid_base
        self.pyramid_depth = pyramid_depth
        self.weights = compute_pyramid_weights(pyramid_base, pyramid_depth)
        self.max_score = compute_pyramid_max_score(pyramid_base, pyramid_depth)
        self.threshold = int(self.max_score * threshold_ratio)
        self._cells_per_axis = tuple(pyramid_base ** level for level in range(1, pyramid_depth + 1))
        self._cache = {}  # view_id -> {track_id -> tuple of cell ids per level}

    def _compute_cells(self, view_id: int, track_ids: List[int]) -> None:
        """Fill the cell cache of a view for the given tracks."""
        cache = self._cache.setdefault(view_id, {})
        missing = [track_id for track_id in track_ids if track_id not in cache]
        if not missing:
            return

        width, height = self.image_size_by_view[view_id]
        keypoints = self.features.features_for(view_id)
        feature_indices = [self.tracks.get(track_id).observations[view_id] for track_id in missing]
        positions = keypoints[feature_indices].reshape(-1, 2)

        x = np.clip(positions[:, 0], 0.0, None)
        y = np.clip(positions[:, 1], 0.0, None)

        cells = []
        for n in self._cells_per_axis:
            x_cell = np.minimum((x * n / width).astype(np.int64), n - 1)
            y_cell = np.minimum((y * n / height).astype(np.int64), n - 1)
            cells.append(y_cell * n + x_cell)

        for k, track_id in enumerate(missing):
            cache[track_id] = tuple(int(level_cells[k]) for level_cells in cells)

    def score(self, view_id: int, track_ids: Iterable[int]) -> int:
        """Compute the pyramid score of a view for a subset of its tracks.

        Args:
            view_id: View ID
            track_ids: Track IDs visible in the view

        Returns:
            Sum over levels of level weight times the number of occupied cells
        """
        track_ids = list(track_ids)
        if not track_ids:
            return 0

        self._compute_cells(view_id, track_ids)
        cache = self._cache[view_id]

        score = 0
        for level, weight in enumerate(self.weights):
            occupied = {cache[track_id][level] for track_id in track_ids}
            score += weight * len(occupied)

        return score

    def invalidate(self, view_id: int) -> None:
        """Drop cached cell membership of a view."""
        self._cache.pop(view_id, None)
