#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Bundle adjustment of camera poses, intrinsics and landmark positions.

The default adjuster minimizes pixel reprojection residuals with
scipy.optimize.least_squares (trust region reflective) and a sparse
Jacobian pattern. The reference view stays fixed, which removes rotation
and translation from the gauge freedom. The scale is removed by keeping the
translation norm of the scale view (the second seed view) constant: only
the direction of its translation is optimized.

Author: Michael Chen
Date: 2024-02-26
Last modified: 2024-04-19
"""

import numpy as np
import cv2
import logging
import time
from typing import Dict, List, Tuple, Optional

from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from seqsfm.core.camera import Camera, CameraExtrinsics
from seqsfm.core.features import FeatureStore
from seqsfm.core.scene import SfMReconstruction

logger = logging.getLogger(__name__)

LOSS_FUNCTIONS = ("linear", "soft_l1", "huber", "cauchy", "arctan")


def robust_cost(residuals: np.ndarray, loss: str = "linear", f_scale: float = 1.0) -> float:
    """Cost of a residual vector as least_squares defines it for a loss.

    Args:
        residuals: Residual vector
        loss: One of LOSS_FUNCTIONS
        f_scale: Soft margin between inlier and outlier residuals

    Returns:
        0.5 * f_scale**2 * sum(rho((r / f_scale)**2))
    """
    z = (np.asarray(residuals, dtype=np.float64) / f_scale) ** 2
    if loss == "linear":
        rho = z
    elif loss == "soft_l1":
        rho = 2.0 * (np.sqrt(1.0 + z) - 1.0)
    elif loss == "huber":
        rho = np.where(z <= 1.0, z, 2.0 * np.sqrt(z) - 1.0)
    elif loss == "cauchy":
        rho = np.log1p(z)
    elif loss == "arctan":
        rho = np.arctan(z)
    else:
        raise ValueError(f"Unknown loss: {loss}")
    return 0.5 * f_scale ** 2 * float(np.sum(rho))


class BundleAdjuster:
    """Non-linear refinement of a reconstruction."""

    def optimize(self,
                 reconstruction: SfMReconstruction,
                 features: FeatureStore,
                 fixed_intrinsics: bool) -> bool:
        """Refine a reconstruction in place.

        Args:
            reconstruction: Reconstruction to refine
            features: Feature store
            fixed_intrinsics: Keep intrinsics constant

        Returns:
            True if the optimization converged and was written back
        """
        raise NotImplementedError("Subclasses must implement optimize")


class _ScaleFreeTranslation:
    """Translation of fixed norm, moved on the sphere by two tangent parameters."""

    def __init__(self, t: np.ndarray):
        t = np.asarray(t, dtype=np.float64).ravel()
        self.norm = float(np.linalg.norm(t))
        self.direction = t / self.norm
        _, _, Vt = np.linalg.svd(self.direction.reshape(1, 3))
        self.tangent = Vt[1:3]  # 2x3 orthonormal basis orthogonal to the direction

    def translation(self, params: np.ndarray) -> np.ndarray:
        moved = self.direction + params @ self.tangent
        return (self.norm * moved / np.linalg.norm(moved)).reshape(3, 1)


class ScipyBundleAdjuster(BundleAdjuster):
    """Sparse bundle adjustment with scipy least squares."""

    def __init__(self,
                 max_nfev: int = 100,
                 loss: str = "linear",
                 f_scale: float = 1.0,
                 verbose: bool = False):
        """Initialize bundle adjuster.

        Outliers are expected to be removed between adjustments, so the
        default loss is plain least squares.

        Args:
            max_nfev: Maximum number of function evaluations
            loss: Loss passed to least_squares (see LOSS_FUNCTIONS)
            f_scale: Soft margin of a robust loss in pixels
            verbose: Print solver progress
        """
        if loss not in LOSS_FUNCTIONS:
            raise ValueError(f"Unknown loss: {loss}")
        self.max_nfev = max_nfev
        self.loss = loss
        self.f_scale = f_scale
        self.verbose = verbose

    def optimize(self,
                 reconstruction: SfMReconstruction,
                 features: FeatureStore,
                 fixed_intrinsics: bool) -> bool:
        view_ids = sorted(reconstruction.poses.keys())
        if not view_ids:
            return False

        reference_id = reconstruction.reference_view_id
        if reference_id not in reconstruction.poses:
            reference_id = view_ids[0]

        scale_id = reconstruction.scale_view_id
        if (scale_id not in reconstruction.poses or scale_id == reference_id
                or np.linalg.norm(reconstruction.poses[scale_id].t) < 1e-12):
            scale_id = None
        scale_translation = _ScaleFreeTranslation(reconstruction.poses[scale_id].t) if scale_id is not None else None

        # Parameter layout: free poses, free intrinsics, points
        free_views = [v for v in view_ids if v != reference_id]
        pose_offset = {}
        pose_size = {}
        offset = 0
        for view_id in free_views:
            pose_offset[view_id] = offset
            pose_size[view_id] = 5 if view_id == scale_id else 6
            offset += pose_size[view_id]

        intrinsic_ids = sorted(reconstruction.reconstructed_intrinsic_ids)
        intrinsic_offset = {}
        intrinsic_size = {}
        x0_intrinsics = []
        if not fixed_intrinsics:
            for intrinsic_id in intrinsic_ids:
                params = reconstruction.intrinsics[intrinsic_id].get_params()
                intrinsic_offset[intrinsic_id] = offset
                intrinsic_size[intrinsic_id] = len(params)
                x0_intrinsics.append(params)
                offset += len(params)
        point_offset_base = offset

        track_ids = sorted(reconstruction.landmarks.keys())
        point_index = {track_id: k for k, track_id in enumerate(track_ids)}

        # Observations grouped per view
        obs_points = {}
        obs_uv = {}
        for view_id in view_ids:
            keypoints = features.features_for(view_id)
            tids = [tid for tid in track_ids if view_id in reconstruction.landmarks[tid].observations]
            if not tids:
                continue
            obs_points[view_id] = np.array([point_index[tid] for tid in tids], dtype=np.int64)
            obs_uv[view_id] = keypoints[[reconstruction.landmarks[tid].observations[view_id] for tid in tids]]

        num_obs = sum(len(idx) for idx in obs_points.values())
        num_params = point_offset_base + 3 * len(track_ids)
        if num_obs == 0:
            logger.warning("Bundle adjustment skipped: no observations")
            return False
        if 2 * num_obs < num_params:
            logger.warning(f"Bundle adjustment skipped: {2 * num_obs} residuals for {num_params} parameters")
            return False

        x0_poses = []
        for view_id in free_views:
            pose = reconstruction.poses[view_id]
            if view_id == scale_id:
                x0_poses.append(np.hstack([pose.rvec, np.zeros(2)]))
            else:
                x0_poses.append(np.hstack([pose.rvec, pose.t.flatten()]))
        x0 = np.hstack([np.concatenate(x0_poses) if x0_poses else np.zeros(0),
                        np.concatenate(x0_intrinsics) if x0_intrinsics else np.zeros(0),
                        np.array([reconstruction.landmarks[tid].position for tid in track_ids]).ravel()])

        observed_views = [v for v in view_ids if v in obs_points]

        def build_extrinsics(params: np.ndarray, view_id: int) -> CameraExtrinsics:
            if view_id == reference_id:
                return reconstruction.poses[view_id]
            start = pose_offset[view_id]
            if view_id == scale_id:
                return CameraExtrinsics.from_rvec(params[start:start + 3],
                                                  scale_translation.translation(params[start + 3:start + 5]))
            return CameraExtrinsics.from_rvec(params[start:start + 3], params[start + 3:start + 6])

        def build_camera(params: np.ndarray, view_id: int) -> Camera:
            intrinsic_id = reconstruction.views[view_id].intrinsic_id
            intrinsics = reconstruction.intrinsics[intrinsic_id]
            if intrinsic_id in intrinsic_offset:
                start = intrinsic_offset[intrinsic_id]
                intrinsics = intrinsics.with_params(params[start:start + intrinsic_size[intrinsic_id]])
            return Camera(intrinsics, build_extrinsics(params, view_id))

        def residuals(params: np.ndarray) -> np.ndarray:
            points = params[point_offset_base:].reshape(-1, 3)
            res = []
            for view_id in observed_views:
                camera = build_camera(params, view_id)
                projected, _ = camera.project(points[obs_points[view_id]])
                res.append((projected - obs_uv[view_id]).ravel())
            return np.concatenate(res)

        # Jacobian sparsity pattern
        A = lil_matrix((2 * num_obs, num_params), dtype=int)
        row = 0
        for view_id in observed_views:
            intrinsic_id = reconstruction.views[view_id].intrinsic_id
            for point in obs_points[view_id]:
                rows = [row, row + 1]
                if view_id in pose_offset:
                    start = pose_offset[view_id]
                    for r in rows:
                        A[r, start:start + pose_size[view_id]] = 1
                if intrinsic_id in intrinsic_offset:
                    start = intrinsic_offset[intrinsic_id]
                    for r in rows:
                        A[r, start:start + intrinsic_size[intrinsic_id]] = 1
                start = point_offset_base + 3 * int(point)
                for r in rows:
                    A[r, start:start + 3] = 1
                row += 2

        start_time = time.time()
        initial_cost = robust_cost(residuals(x0), self.loss, self.f_scale)

        try:
            result = least_squares(
                residuals, x0, jac_sparsity=A, method="trf",
                loss=self.loss, f_scale=self.f_scale, x_scale="jac",
                max_nfev=self.max_nfev, verbose=2 if self.verbose else 0
            )
        except (cv2.error, ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"Bundle adjustment failed: {e}")
            return False

        if not result.success:
            logger.warning(f"Bundle adjustment did not converge: {result.message}")
            return False

        final_cost = robust_cost(result.fun, self.loss, self.f_scale)
        if not np.isfinite(final_cost) or final_cost > initial_cost:
            logger.warning(f"Bundle adjustment increased the cost ({initial_cost:.3f} -> {final_cost:.3f})")
            return False

        # Write back
        params = result.x
        for view_id in free_views:
            reconstruction.poses[view_id] = build_extrinsics(params, view_id)
        for intrinsic_id, start in intrinsic_offset.items():
            intrinsics = reconstruction.intrinsics[intrinsic_id]
            reconstruction.intrinsics[intrinsic_id] = intrinsics.with_params(
                params[start:start + intrinsic_size[intrinsic_id]])
        points = params[point_offset_base:].reshape(-1, 3)
        for track_id, k in point_index.items():
            reconstruction.landmarks[track_id].position = points[k].copy()

        logger.info(f"Bundle adjustment: {len(view_ids)} views, {len(track_ids)} points, {num_obs} observations, "
                    f"cost {initial_cost:.3f} -> {final_cost:.3f} in {result.nfev} evaluations, "
                    f"{time.time() - start_time:.2f}s")
        return True
