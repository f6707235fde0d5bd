#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Outlier rejection on the current reconstruction.

Removes observations with large reprojection residuals or behind their
camera, then landmarks left with too few observations or with nearly
parallel viewing rays. Removed observations are also taken out of the
tracks so they are never triangulated again.

Author: Michael Chen
Date: 2024-02-22
Last modified: 2024-04-02
"""

import numpy as np
import logging
from collections import defaultdict
from typing import Dict, List, Tuple, Optional

from seqsfm.core.features import FeatureStore
from seqsfm.core.scene import SfMReconstruction
from seqsfm.core.tracks import TrackStore

logger = logging.getLogger(__name__)


class OutlierRejector:
    """Iterative residual and parallax based outlier rejection."""

    def __init__(self,
                 reconstruction: SfMReconstruction,
                 features: FeatureStore,
                 tracks: TrackStore,
                 min_track_length: int = 2,
                 min_triangulation_angle: float = 2.0,
                 max_passes: int = 10):
        """Initialize rejector.

        Args:
            reconstruction: Reconstruction state
            features: Feature store
            tracks: Track store
            min_track_length: Minimum number of observations a landmark keeps
            min_triangulation_angle: Minimum max ray angle a landmark keeps (degrees)
            max_passes: Maximum number of passes per call
        """
        self.reconstruction = reconstruction
        self.features = features
        self.tracks = tracks
        self.min_track_length = min_track_length
        self.min_triangulation_angle = min_triangulation_angle
        self.max_passes = max_passes

    def _remove_landmark(self, track_id: int) -> None:
        self.reconstruction.remove_landmark(track_id)
        self.tracks.remove_track(track_id)

    def _landmark_max_angles(self) -> Dict[int, float]:
        """Maximum pairwise ray angle of every landmark, in degrees."""
        by_view = defaultdict(list)
        for track_id, landmark in self.reconstruction.landmarks.items():
            for view_id in landmark.observations:
                by_view[view_id].append(track_id)

        # Rays are computed per view in one batch
        rays = defaultdict(list)
        for view_id, track_ids in by_view.items():
            camera = self.reconstruction.get_camera(view_id)
            keypoints = self.features.features_for(view_id)
            points_2d = keypoints[[self.reconstruction.landmarks[tid].observations[view_id] for tid in track_ids]]
            for track_id, ray in zip(track_ids, camera.get_rays(points_2d)):
                rays[track_id].append(ray)

        angles = {}
        for track_id, track_rays in rays.items():
            track_rays = np.array(track_rays)
            cosines = np.clip(track_rays @ track_rays.T, -1.0, 1.0)
            angles[track_id] = float(np.degrees(np.arccos(cosines.min())))
        return angles

    def _reject_pass(self, precision: float) -> int:
        removed = 0

        residuals = self.reconstruction.compute_residuals(self.features)
        for (track_id, view_id), (error, depth) in residuals.items():
            if error > precision or depth <= 0:
                del self.reconstruction.landmarks[track_id].observations[view_id]
                self.tracks.remove_observation(track_id, view_id)
                removed += 1

        for track_id in [tid for tid, lm in self.reconstruction.landmarks.items()
                         if len(lm.observations) < self.min_track_length]:
            self._remove_landmark(track_id)
            removed += 1

        angles = self._landmark_max_angles()
        for track_id, angle in angles.items():
            if angle < self.min_triangulation_angle:
                self._remove_landmark(track_id)
                removed += 1

        return removed

    def reject(self, precision: float, count: int) -> bool:
        """Remove outliers until a pass removes nothing.

        Args:
            precision: Residual threshold in pixels
            count: Number of removals above which another refinement is needed

        Returns:
            True if more than ``count`` elements were removed
        """
        total_removed = 0
        for _ in range(self.max_passes):
            removed = self._reject_pass(precision)
            total_removed += removed
            if removed == 0:
                break

        logger.info(f"Outlier rejection removed {total_removed} observations/points "
                    f"({len(self.reconstruction.landmarks)} points remaining)")
        return total_removed > count
