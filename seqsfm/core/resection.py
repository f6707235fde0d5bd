#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Camera resection: localizing a new view against the current landmarks.

Author: James Wei
Date: 2024-02-20
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional, Iterable

from tqdm import tqdm

from seqsfm.core.features import FeatureStore
from seqsfm.core.geometry import PoseEstimator
from seqsfm.core.scene import SfMReconstruction
from seqsfm.core.tracks import TrackStore

logger = logging.getLogger(__name__)


class Resectioner:
    """Registers views from 2D-3D correspondences."""

    def __init__(self,
                 reconstruction: SfMReconstruction,
                 features: FeatureStore,
                 tracks: TrackStore,
                 pose_estimator: PoseEstimator,
                 min_points_per_pose: int = 30,
                 camera_threshold_floor: float = 4.0,
                 default_model: str = "radial3",
                 focal_ratio: float = 1.2,
                 verbose: bool = False):
        """Initialize resectioner.

        Args:
            reconstruction: Reconstruction state (updated on success)
            features: Feature store
            tracks: Track store
            pose_estimator: Absolute pose solver
            min_points_per_pose: Minimum number of correspondences and of inliers
            camera_threshold_floor: Lower bound of per-camera thresholds (pixels)
            default_model: Lens model assumed for unknown intrinsics
            focal_ratio: Focal guess for unknown intrinsics
            verbose: Show a progress bar
        """
        self.reconstruction = reconstruction
        self.features = features
        self.tracks = tracks
        self.pose_estimator = pose_estimator
        self.min_points_per_pose = min_points_per_pose
        self.camera_threshold_floor = camera_threshold_floor
        self.default_model = default_model
        self.focal_ratio = focal_ratio
        self.verbose = verbose

    def resection(self, view_id: int) -> bool:
        """Estimate and commit the pose of one view.

        The state is only modified when the pose is accepted.

        Args:
            view_id: View to localize

        Returns:
            True if the view was added to the reconstruction
        """
        if self.reconstruction.is_reconstructed(view_id):
            logger.warning(f"View {view_id} is already reconstructed")
            return False

        track_ids = sorted(tid for tid in self.tracks.tracks_in_view(view_id)
                           if tid in self.reconstruction.landmarks)
        if len(track_ids) < self.min_points_per_pose:
            logger.warning(f"Insufficient 2D-3D correspondences for view {view_id}: "
                           f"{len(track_ids)} < {self.min_points_per_pose}")
            return False

        keypoints = self.features.features_for(view_id)
        feature_indices = [self.tracks.get(tid).observations[view_id] for tid in track_ids]
        points_2d = keypoints[feature_indices]
        points_3d = np.array([self.reconstruction.landmarks[tid].position for tid in track_ids], dtype=np.float64)

        intrinsics = self.reconstruction.resolved_intrinsics(view_id, self.default_model, self.focal_ratio)

        pose = self.pose_estimator.estimate_pose(points_3d, points_2d, intrinsics)
        if pose is None:
            logger.warning(f"Pose estimation failed for view {view_id}")
            return False

        if pose.num_inliers < self.min_points_per_pose:
            logger.warning(f"Insufficient inliers for view {view_id}: "
                           f"{pose.num_inliers} < {self.min_points_per_pose}")
            return False

        # Commit
        intrinsic_id = self.reconstruction.views[view_id].intrinsic_id
        self.reconstruction.intrinsics[intrinsic_id] = intrinsics
        self.reconstruction.add_pose(view_id, pose.extrinsics)

        threshold = float(np.max(pose.residuals)) if len(pose.residuals) else 0.0
        self.reconstruction.set_camera_threshold(view_id, threshold, self.camera_threshold_floor)

        for index in pose.inliers:
            track_id = track_ids[int(index)]
            self.reconstruction.landmarks[track_id].observations[view_id] = feature_indices[int(index)]

        logger.info(f"Resected view {view_id}: {pose.num_inliers} inliers out of {len(track_ids)} "
                    f"correspondences (threshold {self.reconstruction.camera_thresholds[view_id]:.2f} px)")
        return True

    def robust_resection_of_images(self, view_ids: Iterable[int]) -> Tuple[List[int], List[int]]:
        """Resect a batch of views, committing them one after the other.

        Args:
            view_ids: Views to localize, in priority order

        Returns:
            Tuple of (reconstructed view IDs, rejected view IDs)
        """
        reconstructed = []
        rejected = []

        for view_id in tqdm(list(view_ids), desc="Resection", disable=not self.verbose):
            if self.resection(view_id):
                reconstructed.append(view_id)
            else:
                rejected.append(view_id)

        return reconstructed, rejected
