#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Scene description and evolving reconstruction state.

Author: James Wei
Date: 2024-01-25
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional, Set, Any
from dataclasses import dataclass, field
from collections import defaultdict

from seqsfm.core.camera import Camera, CameraIntrinsics, CameraExtrinsics
from seqsfm.core.features import FeatureStore

logger = logging.getLogger(__name__)


@dataclass
class View:
    """Input image of the scene."""
    view_id: int
    intrinsic_id: int
    width: int
    height: int
    image_path: str = ""

    @property
    def image_size(self) -> Tuple[int, int]:
        return (self.width, self.height)


@dataclass
class SceneDescriptor:
    """Initial views and (possibly placeholder) intrinsics."""
    views: Dict[int, View]
    intrinsics: Dict[int, CameraIntrinsics]

    @classmethod
    def from_dict(cls, data: Dict) -> 'SceneDescriptor':
        """Create from dictionary (as loaded from a scene JSON file)."""
        views = {}
        for view_data in data.get("views", []):
            view = View(
                view_id=int(view_data["id"]),
                intrinsic_id=int(view_data.get("intrinsic_id", 0)),
                width=int(view_data["width"]),
                height=int(view_data["height"]),
                image_path=view_data.get("image_path", "")
            )
            views[view.view_id] = view

        intrinsics = {int(k): CameraIntrinsics.from_dict(v) for k, v in data.get("intrinsics", {}).items()}

        # Views referencing an undeclared intrinsic get an unknown placeholder
        for view in views.values():
            if view.intrinsic_id not in intrinsics:
                intrinsics[view.intrinsic_id] = CameraIntrinsics(
                    width=view.width, height=view.height, fx=0.0, fy=0.0, cx=0.0, cy=0.0, model="unknown")

        return cls(views=views, intrinsics=intrinsics)


@dataclass
class Landmark:
    """Triangulated 3D point; keyed by the track it comes from."""
    track_id: int
    position: np.ndarray  # 3D position
    observations: Dict[int, int] = field(default_factory=dict)  # view_id -> feature_idx
    color: np.ndarray = field(default_factory=lambda: np.array([200, 200, 200], dtype=np.uint8))
    error: float = 0.0  # Mean reprojection error

    def to_tuple(self) -> Tuple[float, float, float]:
        """Convert position to tuple."""
        return tuple(float(x) for x in self.position)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "track_id": self.track_id,
            "position": list(self.to_tuple()),
            "observations": {str(v): int(f) for v, f in self.observations.items()},
            "error": self.error,
        }


class SfMReconstruction:
    """Structure from Motion reconstruction state."""

    def __init__(self, scene: SceneDescriptor):
        """Initialize reconstruction with every view remaining.

        Args:
            scene: Scene descriptor
        """
        self.views = dict(scene.views)
        self.intrinsics = dict(scene.intrinsics)  # intrinsic_id -> CameraIntrinsics
        self.poses = {}  # view_id -> CameraExtrinsics
        self.landmarks = {}  # track_id -> Landmark
        self.camera_thresholds = {}  # view_id -> per-camera residual threshold (pixels)
        self.remaining_view_ids = set(self.views.keys())
        self.reference_view_id = None  # View whose pose fixes the gauge
        self.scale_view_id = None  # View whose translation norm fixes the scale

    @property
    def reconstructed_view_ids(self) -> Set[int]:
        return set(self.poses.keys())

    @property
    def reconstructed_intrinsic_ids(self) -> Set[int]:
        return {self.views[view_id].intrinsic_id for view_id in self.poses}

    def is_reconstructed(self, view_id: int) -> bool:
        return view_id in self.poses

    def get_intrinsics(self, view_id: int) -> CameraIntrinsics:
        return self.intrinsics[self.views[view_id].intrinsic_id]

    def resolved_intrinsics(self, view_id: int, default_model: str, focal_ratio: float) -> CameraIntrinsics:
        """Intrinsics of a view with placeholder values replaced by guesses."""
        return self.get_intrinsics(view_id).resolved(default_model, focal_ratio)

    def get_camera(self, view_id: int) -> Optional[Camera]:
        """Get camera by view ID; None if the view is not reconstructed."""
        pose = self.poses.get(view_id)
        if pose is None:
            return None
        return Camera(self.get_intrinsics(view_id), pose)

    def add_pose(self, view_id: int, pose: CameraExtrinsics) -> None:
        """Register the pose of a view and take it out of the remaining set."""
        self.poses[view_id] = pose
        self.remaining_view_ids.discard(view_id)

    def set_camera_threshold(self, view_id: int, threshold: float, floor: float) -> None:
        self.camera_thresholds[view_id] = max(float(threshold), floor)

    def add_landmark(self, landmark: Landmark) -> None:
        self.landmarks[landmark.track_id] = landmark

    def remove_landmark(self, track_id: int) -> None:
        self.landmarks.pop(track_id, None)

    def compute_residuals(self, features: FeatureStore) -> Dict[Tuple[int, int], Tuple[float, float]]:
        """Compute the reprojection residual of every observation.

        Args:
            features: Feature store

        Returns:
            Dictionary of (track_id, view_id) -> (residual in pixels, depth)
        """
        by_view = defaultdict(list)
        for track_id, landmark in self.landmarks.items():
            for view_id in landmark.observations:
                by_view[view_id].append(track_id)

        residuals = {}
        for view_id, track_ids in by_view.items():
            camera = self.get_camera(view_id)
            if camera is None:
                continue
            keypoints = features.features_for(view_id)
            points_3d = np.array([self.landmarks[tid].position for tid in track_ids], dtype=np.float64)
            points_2d = keypoints[[self.landmarks[tid].observations[view_id] for tid in track_ids]]
            errors, depths = camera.residuals(points_3d, points_2d)
            for track_id, error, depth in zip(track_ids, errors, depths):
                residuals[(track_id, view_id)] = (float(error), float(depth))

        return residuals

    def update_landmark_errors(self, features: FeatureStore) -> None:
        """Refresh the mean reprojection error stored on each landmark."""
        per_track = defaultdict(list)
        for (track_id, _), (error, _) in self.compute_residuals(features).items():
            per_track[track_id].append(error)
        for track_id, errors in per_track.items():
            self.landmarks[track_id].error = float(np.mean(errors))

    def get_cameras(self) -> Dict[int, Camera]:
        """All reconstructed cameras."""
        return {view_id: self.get_camera(view_id) for view_id in sorted(self.poses)}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary of the reconstruction."""
        return {
            "cameras": {str(view_id): camera.to_dict() for view_id, camera in self.get_cameras().items()},
            "points": [lm.to_dict() for lm in self.landmarks.values()],
            "reconstructed_view_ids": sorted(self.poses.keys()),
            "remaining_view_ids": sorted(self.remaining_view_ids),
        }
