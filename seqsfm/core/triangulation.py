#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Multi-view triangulation of tracks made observable by newly added views.

Author: James Wei
Date: 2024-02-21
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional, Iterable

from tqdm import tqdm

from seqsfm.core.camera import max_ray_angle
from seqsfm.core.features import FeatureStore
from seqsfm.core.geometry import PointTriangulator
from seqsfm.core.pyramid import ViewScorer
from seqsfm.core.scene import SfMReconstruction, Landmark
from seqsfm.core.tracks import TrackStore

logger = logging.getLogger(__name__)


class Triangulator:
    """Creates and extends landmarks after resection."""

    def __init__(self,
                 reconstruction: SfMReconstruction,
                 features: FeatureStore,
                 tracks: TrackStore,
                 point_triangulator: PointTriangulator,
                 scorer: Optional[ViewScorer] = None,
                 min_triangulation_angle: float = 2.0,
                 camera_threshold_floor: float = 4.0,
                 verbose: bool = False):
        """Initialize triangulator.

        Args:
            reconstruction: Reconstruction state
            features: Feature store
            tracks: Track store
            point_triangulator: Multi-view point solver
            scorer: Pyramid scorer whose cache is invalidated for touched views
            min_triangulation_angle: Minimum ray angle of a new landmark (degrees)
            camera_threshold_floor: Threshold used for views without one (pixels)
            verbose: Show a progress bar
        """
        self.reconstruction = reconstruction
        self.features = features
        self.tracks = tracks
        self.point_triangulator = point_triangulator
        self.scorer = scorer
        self.min_triangulation_angle = min_triangulation_angle
        self.camera_threshold_floor = camera_threshold_floor
        self.verbose = verbose

    def _observation(self, track_id: int, view_id: int) -> Tuple[int, np.ndarray]:
        feature_idx = self.tracks.get(track_id).observations[view_id]
        return feature_idx, self.features.features_for(view_id)[feature_idx]

    def _accepts(self, view_id: int, point: np.ndarray, observed: np.ndarray) -> bool:
        """Depth and residual gate of one observation."""
        camera = self.reconstruction.get_camera(view_id)
        errors, depths = camera.residuals(point.reshape(1, 3), observed.reshape(1, 2))
        threshold = self.reconstruction.camera_thresholds.get(view_id, self.camera_threshold_floor)
        return depths[0] > 0 and errors[0] < threshold

    def triangulate(self, previous_views: Iterable[int], new_views: Iterable[int]) -> int:
        """Triangulate tracks linking new views to the reconstruction.

        Every track seen by a new view and by at least one other reconstructed
        view is considered. Existing landmarks gain the observations passing
        the gates; other tracks get a new landmark when at least two
        observations pass and their rays are not too parallel.

        Args:
            previous_views: Views reconstructed before this round
            new_views: Views resected in this round

        Returns:
            Number of new landmarks
        """
        new_views = list(new_views)
        observers = set(previous_views) | set(new_views)
        observers &= self.reconstruction.reconstructed_view_ids

        candidates = set()
        for view_id in new_views:
            candidates |= self.tracks.tracks_in_view(view_id)

        num_new = 0
        num_extended = 0
        touched_views = set()

        for track_id in tqdm(sorted(candidates), desc="Triangulation", disable=not self.verbose):
            track = self.tracks.get(track_id)
            track_views = sorted(v for v in track.observations if v in observers)
            if len(track_views) < 2:
                continue

            landmark = self.reconstruction.landmarks.get(track_id)
            if landmark is not None:
                for view_id in track_views:
                    if view_id in landmark.observations:
                        continue
                    feature_idx, observed = self._observation(track_id, view_id)
                    if self._accepts(view_id, landmark.position, observed):
                        landmark.observations[view_id] = feature_idx
                        touched_views.add(view_id)
                        num_extended += 1
                continue

            observations = [self._observation(track_id, v) for v in track_views]
            cameras = [self.reconstruction.get_camera(v) for v in track_views]
            points_2d = np.array([observed for _, observed in observations])

            point = self.point_triangulator.triangulate(cameras, points_2d)
            if point is None:
                continue

            kept = [k for k, view_id in enumerate(track_views) if self._accepts(view_id, point, points_2d[k])]
            if len(kept) < 2:
                continue

            angle = max_ray_angle([cameras[k] for k in kept], points_2d[kept])
            if angle < self.min_triangulation_angle:
                logger.debug(f"Track {track_id} not triangulated: max angle {angle:.2f} deg")
                continue

            landmark = Landmark(
                track_id=track_id,
                position=np.asarray(point, dtype=np.float64),
                observations={track_views[k]: observations[k][0] for k in kept}
            )
            self.reconstruction.add_landmark(landmark)
            touched_views.update(track_views[k] for k in kept)
            num_new += 1

        if self.scorer is not None:
            for view_id in touched_views:
                self.scorer.invalidate(view_id)

        logger.info(f"Triangulated {num_new} new points, added {num_extended} observations to existing points")
        return num_new
