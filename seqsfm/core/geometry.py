#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Geometric solvers used by the reconstruction engine.

The engine only talks to the abstract estimators below; the default
implementations wrap OpenCV (essential matrix, PnP RANSAC) and a linear
multi-view DLT. All solvers work on undistorted normalized coordinates so
that every lens model is handled the same way.

Author: Sarah Li
Date: 2024-02-05
Last modified: 2024-04-02
"""

import numpy as np
import cv2
import logging
from typing import Dict, List, Tuple, Optional
from dataclasses import dataclass

from seqsfm.core.camera import Camera, CameraIntrinsics, CameraExtrinsics

logger = logging.getLogger(__name__)


@dataclass
class RelativePose:
    """Relative pose of a second camera with respect to a first one at the origin."""
    R: np.ndarray  # 3x3 rotation
    t: np.ndarray  # 3x1 translation (unit norm)
    inliers: np.ndarray  # N boolean mask over the input correspondences
    residual_precision: float  # Inlier threshold used, in pixels

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))


@dataclass
class AbsolutePose:
    """Pose of a camera estimated from 2D-3D correspondences."""
    R: np.ndarray  # 3x3 rotation (world to camera)
    t: np.ndarray  # 3x1 translation
    inliers: np.ndarray  # Indices of inlier correspondences
    residuals: np.ndarray  # Pixel residuals of the inliers

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)

    @property
    def extrinsics(self) -> CameraExtrinsics:
        return CameraExtrinsics(R=self.R, t=self.t.reshape(3, 1))


class RelativePoseEstimator:
    """Two-view relative pose solver."""

    def estimate_relative_pose(self,
                               intrinsics_i: CameraIntrinsics,
                               intrinsics_j: CameraIntrinsics,
                               points_i: np.ndarray,
                               points_j: np.ndarray) -> Optional[RelativePose]:
        """Estimate the pose of view j relative to view i.

        Args:
            intrinsics_i: Intrinsics of view i
            intrinsics_j: Intrinsics of view j
            points_i: Nx2 pixel positions in view i
            points_j: Nx2 pixel positions in view j

        Returns:
            Relative pose or None if estimation failed
        """
        raise NotImplementedError("Subclasses must implement estimate_relative_pose")


class PoseEstimator:
    """Absolute pose (resection) solver."""

    def estimate_pose(self,
                      points_3d: np.ndarray,
                      points_2d: np.ndarray,
                      intrinsics: CameraIntrinsics) -> Optional[AbsolutePose]:
        """Estimate a camera pose from 2D-3D correspondences.

        Args:
            points_3d: Nx3 world points
            points_2d: Nx2 pixel observations
            intrinsics: Camera intrinsics

        Returns:
            Absolute pose or None if estimation failed
        """
        raise NotImplementedError("Subclasses must implement estimate_pose")


class PointTriangulator:
    """Multi-view point triangulation solver."""

    def triangulate(self, cameras: List[Camera], points_2d: np.ndarray) -> Optional[np.ndarray]:
        """Triangulate one point observed by several cameras.

        Args:
            cameras: Observing cameras
            points_2d: Nx2 pixel observations, one per camera

        Returns:
            3D point or None if triangulation failed
        """
        raise NotImplementedError("Subclasses must implement triangulate")


class EssentialMatrixEstimator(RelativePoseEstimator):
    """Relative pose from a RANSAC essential matrix and cheirality check."""

    def __init__(self, threshold: float = 4.0, confidence: float = 0.999, min_points: int = 8):
        """Initialize estimator.

        Args:
            threshold: RANSAC inlier threshold in pixels
            confidence: RANSAC confidence
            min_points: Minimum number of correspondences
        """
        self.threshold = threshold
        self.confidence = confidence
        self.min_points = min_points

    def estimate_relative_pose(self,
                               intrinsics_i: CameraIntrinsics,
                               intrinsics_j: CameraIntrinsics,
                               points_i: np.ndarray,
                               points_j: np.ndarray) -> Optional[RelativePose]:
        if len(points_i) < self.min_points:
            return None

        try:
            norm_i = intrinsics_i.undistort_normalized(points_i)
            norm_j = intrinsics_j.undistort_normalized(points_j)

            # Pixel threshold expressed on the normalized plane
            focal = 0.5 * (intrinsics_i.focal + intrinsics_j.focal)
            threshold = self.threshold / focal

            E, mask = cv2.findEssentialMat(
                norm_i, norm_j, np.eye(3), method=cv2.RANSAC,
                prob=self.confidence, threshold=threshold
            )
            if E is None or mask is None:
                return None

            # Several solutions may be stacked; keep the first
            if E.shape[0] > 3:
                E = E[:3]

            _, R, t, pose_mask = cv2.recoverPose(E, norm_i, norm_j, np.eye(3), mask=mask.copy())
        except (cv2.error, ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"Relative pose estimation failed: {e}")
            return None

        inliers = pose_mask.ravel() > 0
        if np.count_nonzero(inliers) < self.min_points:
            return None

        return RelativePose(R=R, t=t.reshape(3, 1), inliers=inliers, residual_precision=self.threshold)


class PnPRansacEstimator(PoseEstimator):
    """Camera resection with EPnP inside RANSAC, refined by iterative PnP."""

    def __init__(self,
                 threshold: float = 4.0,
                 iterations: int = 1000,
                 confidence: float = 0.999,
                 min_points: int = 6):
        """Initialize estimator.

        Args:
            threshold: RANSAC inlier threshold in pixels
            iterations: Maximum RANSAC iterations
            confidence: RANSAC confidence
            min_points: Minimum number of correspondences
        """
        self.threshold = threshold
        self.iterations = iterations
        self.confidence = confidence
        self.min_points = min_points

    def estimate_pose(self,
                      points_3d: np.ndarray,
                      points_2d: np.ndarray,
                      intrinsics: CameraIntrinsics) -> Optional[AbsolutePose]:
        points_3d = np.ascontiguousarray(points_3d, dtype=np.float64).reshape(-1, 3)
        points_2d = np.ascontiguousarray(points_2d, dtype=np.float64).reshape(-1, 2)

        if len(points_3d) < self.min_points:
            return None

        try:
            normalized = np.ascontiguousarray(intrinsics.undistort_normalized(points_2d))

            success, rvec, tvec, inliers = cv2.solvePnPRansac(
                points_3d, normalized, np.eye(3), None,
                iterationsCount=self.iterations,
                reprojectionError=self.threshold / intrinsics.focal,
                confidence=self.confidence,
                flags=cv2.SOLVEPNP_EPNP
            )

            if not success or inliers is None or len(inliers) < self.min_points:
                return None

            inlier_indices = inliers.ravel()

            # Refine pose on the inliers
            success, rvec, tvec = cv2.solvePnP(
                points_3d[inlier_indices], normalized[inlier_indices], np.eye(3), None,
                rvec=rvec, tvec=tvec, useExtrinsicGuess=True, flags=cv2.SOLVEPNP_ITERATIVE
            )
            if not success:
                return None
        except (cv2.error, ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"PnP RANSAC failed: {e}")
            return None

        extrinsics = CameraExtrinsics.from_rvec(rvec, tvec)
        camera = Camera(intrinsics, extrinsics)
        residuals, depths = camera.residuals(points_3d[inlier_indices], points_2d[inlier_indices])

        # Refinement may push some inliers out of the threshold
        keep = (residuals <= self.threshold) & (depths > 0)
        inlier_indices = inlier_indices[keep]
        residuals = residuals[keep]

        return AbsolutePose(R=extrinsics.R, t=extrinsics.t, inliers=inlier_indices, residuals=residuals)


class DLTTriangulator(PointTriangulator):
    """Linear multi-view triangulation on normalized coordinates."""

    def triangulate(self, cameras: List[Camera], points_2d: np.ndarray) -> Optional[np.ndarray]:
        if len(cameras) < 2:
            return None

        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)

        A = np.zeros((len(cameras) * 2, 4))
        try:
            for i, (camera, point) in enumerate(zip(cameras, points_2d)):
                x, y = camera.intrinsics.undistort_normalized(point.reshape(1, 2))[0]
                P = camera.projection_matrix
                A[i * 2] = x * P[2] - P[0]
                A[i * 2 + 1] = y * P[2] - P[1]

            # Solve system A * X = 0
            _, _, Vt = np.linalg.svd(A)
        except (cv2.error, np.linalg.LinAlgError) as e:
            logger.debug(f"Triangulation failed: {e}")
            return None

        X = Vt[-1]
        if abs(X[3]) < 1e-12:
            return None

        return X[:3] / X[3]
