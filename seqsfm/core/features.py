#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Feature storage consumed by the reconstruction engine.

Feature detection is done upstream; this module only holds the 2D
positions of already extracted features, indexed per view.

Author: Alex Johnson
Date: 2024-01-18
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class FeatureData:
    """Container for feature data."""
    keypoints: np.ndarray  # Nx2 array of (x, y) coordinates
    image_size: Tuple[int, int]  # (width, height) of the source image
    feature_type: str = "unknown"  # Type of features (e.g., 'sift', 'superpoint')
    scores: Optional[np.ndarray] = None  # N array of detection scores/responses


class FeatureStore:
    """Read-only access to the 2D features of each view.

    The store is borrowed by the engine and must outlive it.
    """

    def features_for(self, view_id: int) -> np.ndarray:
        """Get feature positions of a view.

        Args:
            view_id: View ID

        Returns:
            Nx2 array of feature positions, indexed by feature index
        """
        raise NotImplementedError("Subclasses must implement features_for")

    def view_ids(self) -> List[int]:
        """Views that have features."""
        raise NotImplementedError("Subclasses must implement view_ids")


class InMemoryFeatureStore(FeatureStore):
    """Feature store backed by a dictionary of FeatureData."""

    def __init__(self, features_by_view: Optional[Dict[int, FeatureData]] = None):
        """Initialize feature store.

        Args:
            features_by_view: Mapping of view ID to feature data
        """
        self._features = {}
        for view_id, features in (features_by_view or {}).items():
            self.set_features(view_id, features)

    def set_features(self, view_id: int, features: FeatureData) -> None:
        """Set features for a view."""
        keypoints = np.asarray(features.keypoints, dtype=np.float64).reshape(-1, 2)
        self._features[view_id] = FeatureData(
            keypoints=keypoints,
            image_size=features.image_size,
            feature_type=features.feature_type,
            scores=features.scores
        )

    def features_for(self, view_id: int) -> np.ndarray:
        features = self._features.get(view_id)
        if features is None:
            return np.zeros((0, 2))
        return features.keypoints

    def view_ids(self) -> List[int]:
        return sorted(self._features.keys())

    @classmethod
    def from_arrays(cls, keypoints_by_view: Dict[int, np.ndarray],
                    image_size_by_view: Optional[Dict[int, Tuple[int, int]]] = None) -> 'InMemoryFeatureStore':
        """Create from plain keypoint arrays."""
        image_size_by_view = image_size_by_view or {}
        return cls({
            view_id: FeatureData(keypoints=keypoints, image_size=image_size_by_view.get(view_id, (0, 0)))
            for view_id, keypoints in keypoints_by_view.items()
        })
