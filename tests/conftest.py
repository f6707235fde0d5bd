#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Shared fixtures: a synthetic scene projecting a known point set into known
cameras, producing exact features and matches.

Author: Alex Johnson
Date: 2024-03-06
Last modified: 2024-04-02
"""

import numpy as np
import cv2
import pytest
from itertools import combinations
from typing import Dict, List, Optional, Set

from seqsfm.core.camera import Camera, CameraIntrinsics, CameraExtrinsics
from seqsfm.core.features import InMemoryFeatureStore
from seqsfm.core.matching import InMemoryMatchStore
from seqsfm.core.scene import SceneDescriptor, View, SfMReconstruction, Landmark
from seqsfm.core.tracks import TrackStore

WIDTH = 640
HEIGHT = 480
FOCAL = 500.0


def make_intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics(width=WIDTH, height=HEIGHT, fx=FOCAL, fy=FOCAL,
                            cx=WIDTH / 2.0, cy=HEIGHT / 2.0, model="pinhole")


def look_at_pose(center: np.ndarray, target=(0.0, 0.0, 6.0)) -> CameraExtrinsics:
    """Camera at ``center`` turned about the Y axis towards ``target``."""
    direction = np.asarray(target, dtype=np.float64) - center
    angle = np.arctan2(-direction[0], direction[2])
    R, _ = cv2.Rodrigues(np.array([0.0, angle, 0.0]))
    t = -R @ center.reshape(3, 1)
    return CameraExtrinsics(R=R, t=t)


class SyntheticScene:
    """Known points seen by cameras placed along the X axis."""

    def __init__(self, num_views: int = 5, num_points: int = 300, spacing: float = 0.8, seed: int = 0):
        rng = np.random.default_rng(seed)
        self.points = np.column_stack([
            rng.uniform(-2.0, 2.0, num_points),
            rng.uniform(-1.5, 1.5, num_points),
            rng.uniform(4.0, 8.0, num_points),
        ])
        self.intrinsics = make_intrinsics()

        centers = (np.arange(num_views) - (num_views - 1) / 2.0) * spacing
        self.poses = {view_id: look_at_pose(np.array([c, 0.0, 0.0])) for view_id, c in enumerate(centers)}

        self.keypoints = {}  # view_id -> Nx2 features
        self.visible = {}  # view_id -> point index of each feature
        self.feature_of = {}  # view_id -> {point index -> feature index}
        for view_id, pose in self.poses.items():
            uv, depths = Camera(self.intrinsics, pose).project(self.points)
            mask = ((depths > 0) & (uv[:, 0] >= 0) & (uv[:, 0] < WIDTH)
                    & (uv[:, 1] >= 0) & (uv[:, 1] < HEIGHT))
            self.visible[view_id] = np.flatnonzero(mask)
            self.keypoints[view_id] = uv[mask]
            self.feature_of[view_id] = {int(p): f for f, p in enumerate(self.visible[view_id])}

    def point_of(self, view_id: int, feature_idx: int) -> int:
        return int(self.visible[view_id][feature_idx])

    def common_points(self, view_ids: List[int]) -> List[int]:
        common = set(self.feature_of[view_ids[0]])
        for view_id in view_ids[1:]:
            common &= set(self.feature_of[view_id])
        return sorted(common)

    def build(self, view_ids: Optional[List[int]] = None,
              point_subsets: Optional[Dict[int, Set[int]]] = None,
              intrinsics: Optional[CameraIntrinsics] = None,
              noise: float = 0.0,
              noise_seed: int = 0):
        """Scene, features and matches restricted to some views and points.

        Args:
            view_ids: Views to include (all by default)
            point_subsets: View ID -> point indices the view is matched on
            intrinsics: Intrinsics shared by every view (exact ones by default)
            noise: Standard deviation of the Gaussian pixel noise added to the features
            noise_seed: Seed of the noise generator

        Returns:
            Tuple of (scene descriptor, feature store, match store)
        """
        view_ids = sorted(view_ids if view_ids is not None else self.poses.keys())
        point_subsets = point_subsets or {}

        scene = SceneDescriptor(
            views={v: View(view_id=v, intrinsic_id=0, width=WIDTH, height=HEIGHT) for v in view_ids},
            intrinsics={0: intrinsics or self.intrinsics}
        )
        rng = np.random.default_rng(noise_seed)
        keypoints = {v: self.keypoints[v] + rng.normal(scale=noise, size=self.keypoints[v].shape) if noise > 0
                     else self.keypoints[v] for v in view_ids}
        features = InMemoryFeatureStore.from_arrays(keypoints,
                                                    {v: (WIDTH, HEIGHT) for v in view_ids})

        def allowed(view_id):
            points = set(self.feature_of[view_id])
            if view_id in point_subsets:
                points &= set(point_subsets[view_id])
            return points

        matches = {}
        for a, b in combinations(view_ids, 2):
            common = sorted(allowed(a) & allowed(b))
            if common:
                matches[(a, b)] = np.array([[self.feature_of[a][p], self.feature_of[b][p]] for p in common])

        return scene, features, InMemoryMatchStore.from_arrays(matches)

    def reconstruction_from_truth(self, scene: SceneDescriptor, tracks: TrackStore,
                                  posed_views: List[int], floor: float = 4.0) -> SfMReconstruction:
        """Reconstruction with ground truth poses and points for tracks seen twice."""
        reconstruction = SfMReconstruction(scene)
        for view_id in posed_views:
            reconstruction.add_pose(view_id, self.poses[view_id])
            reconstruction.set_camera_threshold(view_id, 0.0, floor)
        reconstruction.reference_view_id = posed_views[0]
        if len(posed_views) > 1:
            reconstruction.scale_view_id = posed_views[1]

        for track in tracks.tracks.values():
            observations = {v: f for v, f in track.observations.items() if v in posed_views}
            if len(observations) < 2:
                continue
            view_id, feature_idx = next(iter(observations.items()))
            point = self.points[self.point_of(view_id, feature_idx)].copy()
            reconstruction.add_landmark(Landmark(track_id=track.id, position=point, observations=observations))

        return reconstruction


@pytest.fixture(scope="session")
def synthetic():
    return SyntheticScene()
