#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Camera module handling camera models, projection and viewing rays.
Supports pinhole, radial, Brown-Conrady and fisheye lens models.

Author: Sarah Li
Date: 2024-01-20
Last modified: 2024-04-02
"""

import numpy as np
import cv2
import logging
from typing import Dict, List, Tuple, Optional
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

# Lens models understood by the reconstruction engine
CAMERA_MODELS = ("pinhole", "radial1", "radial3", "brown", "fisheye")
UNKNOWN_MODEL = "unknown"

# Distortion parameters refined by bundle adjustment for each model
MODEL_DISTORTION_PARAMS = {
    "pinhole": (),
    "radial1": ("k1",),
    "radial3": ("k1", "k2", "k3"),
    "brown": ("k1", "k2", "k3", "p1", "p2"),
    "fisheye": ("k1", "k2", "p1", "p2"),
}


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters."""
    width: int
    height: int
    fx: float  # Focal length x
    fy: float  # Focal length y
    cx: float  # Principal point x
    cy: float  # Principal point y
    k1: float = 0.0  # Radial distortion 1
    k2: float = 0.0  # Radial distortion 2
    p1: float = 0.0  # Tangential distortion 1 (fisheye: k3)
    p2: float = 0.0  # Tangential distortion 2 (fisheye: k4)
    k3: float = 0.0  # Radial distortion 3
    model: str = "pinhole"  # Camera model

    @property
    def K(self) -> np.ndarray:
        """Get intrinsic matrix."""
        return np.array([
            [self.fx, 0, self.cx],
            [0, self.fy, self.cy],
            [0, 0, 1]
        ], dtype=np.float64)

    @property
    def distortion(self) -> np.ndarray:
        """Get distortion coefficients."""
        if self.model == "fisheye":
            return np.array([self.k1, self.k2, self.p1, self.p2], dtype=np.float64)
        else:
            return np.array([self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64)

    @property
    def focal(self) -> float:
        """Mean focal length in pixels."""
        return 0.5 * (self.fx + self.fy)

    @property
    def is_valid(self) -> bool:
        """Whether the intrinsics can be used for projection as they are."""
        return self.model in CAMERA_MODELS and self.fx > 0 and self.fy > 0

    def resolved(self, default_model: str, focal_ratio: float) -> 'CameraIntrinsics':
        """Return a usable copy of placeholder intrinsics.

        An unknown model falls back to ``default_model`` and a missing focal
        length is guessed from the image size.

        Args:
            default_model: Lens model to use when the model is unknown
            focal_ratio: Focal guess as a multiple of the largest image side

        Returns:
            Camera intrinsics with a known model and a positive focal length
        """
        intrinsics = self
        if intrinsics.model not in CAMERA_MODELS:
            intrinsics = replace(intrinsics, model=default_model)
        if intrinsics.fx <= 0 or intrinsics.fy <= 0:
            focal = focal_ratio * max(self.width, self.height)
            intrinsics = replace(intrinsics, fx=focal, fy=focal)
        if intrinsics.cx <= 0 and intrinsics.cy <= 0:
            intrinsics = replace(intrinsics, cx=self.width / 2.0, cy=self.height / 2.0)
        return intrinsics

    def get_params(self) -> np.ndarray:
        """Parameters refined by bundle adjustment: focal then distortion."""
        names = MODEL_DISTORTION_PARAMS.get(self.model, ())
        return np.array([self.fx] + [getattr(self, n) for n in names], dtype=np.float64)

    def with_params(self, params: np.ndarray) -> 'CameraIntrinsics':
        """Inverse of :meth:`get_params`; the aspect ratio fy/fx is kept."""
        names = MODEL_DISTORTION_PARAMS.get(self.model, ())
        aspect = self.fy / self.fx if self.fx else 1.0
        values = {n: float(v) for n, v in zip(names, params[1:])}
        return replace(self, fx=float(params[0]), fy=float(params[0]) * aspect, **values)

    def undistort_normalized(self, points: np.ndarray) -> np.ndarray:
        """Map pixel coordinates to undistorted normalized image coordinates.

        Args:
            points: Nx2 array of distorted pixel coordinates

        Returns:
            Nx2 array of normalized coordinates (z = 1 plane)
        """
        points_reshaped = np.ascontiguousarray(points, dtype=np.float64).reshape(-1, 1, 2)

        if self.model == "fisheye":
            normalized = cv2.fisheye.undistortPoints(points_reshaped, self.K, self.distortion)
        else:
            normalized = cv2.undistortPoints(points_reshaped, self.K, self.distortion)

        return normalized.reshape(-1, 2)

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "width": self.width,
            "height": self.height,
            "fx": self.fx,
            "fy": self.fy,
            "cx": self.cx,
            "cy": self.cy,
            "k1": self.k1,
            "k2": self.k2,
            "p1": self.p1,
            "p2": self.p2,
            "k3": self.k3,
            "model": self.model
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CameraIntrinsics':
        """Create from dictionary."""
        return cls(
            width=data.get("width", 0),
            height=data.get("height", 0),
            fx=data.get("fx", 0.0),
            fy=data.get("fy", data.get("fx", 0.0)),
            cx=data.get("cx", 0.0),
            cy=data.get("cy", 0.0),
            k1=data.get("k1", 0.0),
            k2=data.get("k2", 0.0),
            p1=data.get("p1", 0.0),
            p2=data.get("p2", 0.0),
            k3=data.get("k3", 0.0),
            model=data.get("model", UNKNOWN_MODEL)
        )


@dataclass
class CameraExtrinsics:
    """Camera extrinsic parameters (world to camera: X_c = R X + t)."""
    R: np.ndarray  # 3x3 rotation matrix
    t: np.ndarray  # 3x1 translation vector

    @property
    def matrix(self) -> np.ndarray:
        """Get 4x4 transformation matrix."""
        matrix = np.eye(4)
        matrix[:3, :3] = self.R
        matrix[:3, 3] = self.t.flatten()
        return matrix

    @property
    def center(self) -> np.ndarray:
        """Camera center in world coordinates."""
        return (-self.R.T @ self.t.reshape(3, 1)).flatten()

    @property
    def rvec(self) -> np.ndarray:
        """Rodrigues rotation vector."""
        return cv2.Rodrigues(np.asarray(self.R, dtype=np.float64))[0].flatten()

    def depth(self, points_3d: np.ndarray) -> np.ndarray:
        """Depth of world points along the optical axis."""
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        return points_3d @ self.R[2] + float(self.t.flatten()[2])

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "R": self.R.tolist(),
            "t": self.t.flatten().tolist()
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CameraExtrinsics':
        """Create from dictionary."""
        R = np.array(data.get("R", np.eye(3).tolist()), dtype=np.float64)
        t = np.array(data.get("t", np.zeros(3).tolist()), dtype=np.float64).reshape(3, 1)
        return cls(R, t)

    @classmethod
    def from_rvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> 'CameraExtrinsics':
        """Create from Rodrigues vector and translation."""
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(R, np.asarray(tvec, dtype=np.float64).reshape(3, 1))

    @classmethod
    def identity(cls) -> 'CameraExtrinsics':
        """Camera at the origin looking down the Z axis."""
        return cls(np.eye(3), np.zeros((3, 1)))


class Camera:
    """Full camera model with intrinsics and extrinsics."""

    def __init__(self,
                 intrinsics: CameraIntrinsics,
                 extrinsics: Optional[CameraExtrinsics] = None):
        """Initialize camera.

        Args:
            intrinsics: Camera intrinsics
            extrinsics: Camera extrinsics (pose)
        """
        self.intrinsics = intrinsics

        if extrinsics is None:
            self.extrinsics = CameraExtrinsics.identity()
        else:
            self.extrinsics = extrinsics

    def project(self, points_3d: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Project 3D points to 2D image coordinates.

        Args:
            points_3d: Nx3 array of 3D points in world coordinates

        Returns:
            Tuple of (Nx2 array of 2D points, N array of depths)
        """
        points_3d = np.ascontiguousarray(points_3d, dtype=np.float64).reshape(-1, 3)
        depths = self.extrinsics.depth(points_3d)

        if len(points_3d) == 0:
            return np.zeros((0, 2)), depths

        rvec = self.extrinsics.rvec.reshape(3, 1)
        tvec = self.extrinsics.t.astype(np.float64).reshape(3, 1)

        if self.intrinsics.model == "fisheye":
            points_2d, _ = cv2.fisheye.projectPoints(
                points_3d.reshape(-1, 1, 3), rvec, tvec,
                self.intrinsics.K, self.intrinsics.distortion)
        else:
            points_2d, _ = cv2.projectPoints(
                points_3d, rvec, tvec,
                self.intrinsics.K, self.intrinsics.distortion)

        return points_2d.reshape(-1, 2), depths

    def residuals(self, points_3d: np.ndarray, points_2d: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Reprojection error norms and depths of observed points.

        Args:
            points_3d: Nx3 array of world points
            points_2d: Nx2 array of observed pixel positions

        Returns:
            Tuple of (N array of residual norms in pixels, N array of depths)
        """
        projected, depths = self.project(points_3d)
        errors = np.linalg.norm(projected - np.asarray(points_2d, dtype=np.float64).reshape(-1, 2), axis=1)
        return errors, depths

    def get_rays(self, points_2d: np.ndarray) -> np.ndarray:
        """Unit viewing directions in world coordinates through image points.

        Args:
            points_2d: Nx2 array of pixel positions

        Returns:
            Nx3 array of unit ray directions
        """
        normalized = self.intrinsics.undistort_normalized(points_2d)
        rays_camera = np.column_stack([normalized, np.ones(len(normalized))])
        rays_camera /= np.linalg.norm(rays_camera, axis=1, keepdims=True)
        return rays_camera @ self.extrinsics.R

    @property
    def projection_matrix(self) -> np.ndarray:
        """3x4 normalized projection matrix [R|t]."""
        return np.hstack((self.extrinsics.R, self.extrinsics.t.reshape(3, 1)))

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "intrinsics": self.intrinsics.to_dict(),
            "extrinsics": self.extrinsics.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Camera':
        """Create from dictionary."""
        intrinsics = CameraIntrinsics.from_dict(data.get("intrinsics", {}))
        extrinsics = CameraExtrinsics.from_dict(data.get("extrinsics", {}))
        return cls(intrinsics, extrinsics)


def ray_angle_degrees(ray_a: np.ndarray, ray_b: np.ndarray) -> float:
    """Angle in degrees between two unit rays."""
    cos_angle = np.clip(np.dot(ray_a, ray_b), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def max_ray_angle(cameras: List[Camera], points_2d: np.ndarray) -> float:
    """Largest pairwise angle between the viewing rays of one point.

    Args:
        cameras: Cameras observing the point
        points_2d: Nx2 array of the observations, one per camera

    Returns:
        Maximum angle in degrees (0 for fewer than two observations)
    """
    rays = [camera.get_rays(point.reshape(1, 2))[0] for camera, point in zip(cameras, points_2d)]
    best = 0.0
    for i in range(len(rays)):
        for j in range(i + 1, len(rays)):
            best = max(best, ray_angle_degrees(rays[i], rays[j]))
    return best
