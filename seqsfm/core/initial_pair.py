#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Selection of the image pair that seeds the sequential reconstruction.

Candidate pairs need enough shared tracks, a valid relative pose and a
median triangulation angle inside a given range. They are ranked by the
median angle times the weaker of the two pyramid scores, so a good seed has
both parallax and well spread points.

Author: James Wei
Date: 2024-02-16
Last modified: 2024-04-02
"""

import numpy as np
import logging
from itertools import combinations
from typing import Dict, List, Tuple, Optional, Callable

from tqdm import tqdm

from seqsfm.core.camera import Camera, CameraExtrinsics, ray_angle_degrees
from seqsfm.core.features import FeatureStore
from seqsfm.core.geometry import RelativePoseEstimator, PointTriangulator
from seqsfm.core.pyramid import ViewScorer
from seqsfm.core.scene import SfMReconstruction
from seqsfm.core.tracks import TrackStore

logger = logging.getLogger(__name__)

Pair = Tuple[int, int]


def parse_pair(text: str) -> Optional[Pair]:
    """Parse a view pair typed as two integers ("3 7", "3,7")."""
    tokens = text.replace(",", " ").split()
    if len(tokens) != 2:
        return None
    try:
        return int(tokens[0]), int(tokens[1])
    except ValueError:
        return None


class InitialPairSelector:
    """Ranks view pairs as seed candidates."""

    def __init__(self,
                 reconstruction: SfMReconstruction,
                 features: FeatureStore,
                 tracks: TrackStore,
                 scorer: ViewScorer,
                 relative_pose_estimator: RelativePoseEstimator,
                 triangulator: PointTriangulator,
                 min_tracks: int = 30,
                 min_angle: float = 3.0,
                 max_angle: float = 60.0,
                 default_model: str = "radial3",
                 focal_ratio: float = 1.2,
                 allow_user_interaction: bool = False,
                 prompt: Optional[Callable[[str], str]] = None,
                 verbose: bool = False):
        """Initialize selector.

        Args:
            reconstruction: Reconstruction state (only read)
            features: Feature store
            tracks: Track store
            scorer: Pyramid view scorer
            relative_pose_estimator: Two-view solver
            triangulator: Point triangulator
            min_tracks: Minimum number of shared tracks and of valid points
            min_angle: Lower bound (exclusive) of the median angle in degrees
            max_angle: Upper bound (exclusive) of the median angle in degrees
            default_model: Lens model assumed for unknown intrinsics
            focal_ratio: Focal guess for unknown intrinsics
            allow_user_interaction: Ask for a pair when none is found
            prompt: Callable used to ask the user (defaults to ``input``)
            verbose: Show a progress bar
        """
        self.reconstruction = reconstruction
        self.features = features
        self.tracks = tracks
        self.scorer = scorer
        self.relative_pose_estimator = relative_pose_estimator
        self.triangulator = triangulator
        self.min_tracks = min_tracks
        self.min_angle = min_angle
        self.max_angle = max_angle
        self.default_model = default_model
        self.focal_ratio = focal_ratio
        self.allow_user_interaction = allow_user_interaction
        self.prompt = prompt or input
        self.verbose = verbose

    def is_valid_pair(self, pair: Pair) -> bool:
        """Check that an explicit pair can seed the reconstruction."""
        i, j = pair
        if i == j:
            logger.error(f"Initial pair must contain two distinct views: {pair}")
            return False
        for view_id in (i, j):
            if view_id not in self.reconstruction.views:
                logger.error(f"Initial pair references unknown view {view_id}")
                return False
        if not self.tracks.common_tracks([i, j]):
            logger.error(f"Views {i} and {j} share no track")
            return False
        return True

    def _score_pair(self, pair: Pair) -> Optional[float]:
        """Score a candidate pair; None if it cannot seed the reconstruction."""
        i, j = pair
        track_ids = sorted(self.tracks.common_tracks([i, j]))
        if len(track_ids) < self.min_tracks:
            return None

        intrinsics_i = self.reconstruction.resolved_intrinsics(i, self.default_model, self.focal_ratio)
        intrinsics_j = self.reconstruction.resolved_intrinsics(j, self.default_model, self.focal_ratio)

        keypoints_i = self.features.features_for(i)
        keypoints_j = self.features.features_for(j)
        points_i = keypoints_i[[self.tracks.get(tid).observations[i] for tid in track_ids]]
        points_j = keypoints_j[[self.tracks.get(tid).observations[j] for tid in track_ids]]

        pose = self.relative_pose_estimator.estimate_relative_pose(intrinsics_i, intrinsics_j, points_i, points_j)
        if pose is None:
            logger.debug(f"No relative pose for pair {pair}")
            return None

        camera_i = Camera(intrinsics_i, CameraExtrinsics.identity())
        camera_j = Camera(intrinsics_j, CameraExtrinsics(R=pose.R, t=pose.t))
        inlier_indices = np.flatnonzero(pose.inliers)
        rays_i = camera_i.get_rays(points_i[inlier_indices]) if len(inlier_indices) else np.zeros((0, 3))
        rays_j = camera_j.get_rays(points_j[inlier_indices]) if len(inlier_indices) else np.zeros((0, 3))

        valid_tracks = []
        angles = []
        for k, index in enumerate(inlier_indices):
            observed = np.vstack([points_i[index], points_j[index]])
            point = self.triangulator.triangulate([camera_i, camera_j], observed)
            if point is None:
                continue
            errors_i, depths_i = camera_i.residuals(point.reshape(1, 3), observed[0:1])
            errors_j, depths_j = camera_j.residuals(point.reshape(1, 3), observed[1:2])
            if depths_i[0] <= 0 or depths_j[0] <= 0:
                continue
            if max(errors_i[0], errors_j[0]) > pose.residual_precision:
                continue
            valid_tracks.append(track_ids[index])
            angles.append(ray_angle_degrees(rays_i[k], rays_j[k]))

        if len(valid_tracks) < self.min_tracks:
            return None

        median_angle = float(np.median(angles))
        if not self.min_angle < median_angle < self.max_angle:
            logger.debug(f"Pair {pair} rejected: median angle {median_angle:.2f} deg")
            return None

        score_i = self.scorer.score(i, valid_tracks)
        score_j = self.scorer.score(j, valid_tracks)
        return median_angle * min(score_i, score_j)

    def get_best_initial_image_pairs(self) -> List[Tuple[Pair, float]]:
        """Rank every view pair able to seed the reconstruction.

        Returns:
            List of (pair, score), best first; ties broken by view IDs
        """
        view_ids = sorted(self.reconstruction.views.keys())
        candidates = [pair for pair in combinations(view_ids, 2)
                      if len(self.tracks.common_tracks(pair)) >= self.min_tracks]

        scored = []
        for pair in tqdm(candidates, desc="Scoring initial pairs", disable=not self.verbose):
            score = self._score_pair(pair)
            if score is not None:
                scored.append((pair, score))

        scored.sort(key=lambda item: (-item[1], item[0]))
        logger.info(f"Found {len(scored)} initial pair candidates out of {len(candidates)} pairs")
        return scored

    def ask_user(self) -> Optional[Pair]:
        """Ask the user for an initial pair."""
        answer = self.prompt("Enter the two view IDs of the initial pair: ")
        pair = parse_pair(answer or "")
        if pair is None or not self.is_valid_pair(pair):
            logger.error(f"Invalid initial pair entered: {answer!r}")
            return None
        return pair

    def choose_initial_pair(self, user_pair: Optional[Pair] = None) -> Optional[Pair]:
        """Choose the seed pair.

        Args:
            user_pair: Explicit pair to validate, or None for automatic choice

        Returns:
            Selected pair or None if no valid pair exists
        """
        if user_pair is not None:
            pair = tuple(user_pair)
            return pair if self.is_valid_pair(pair) else None

        candidates = self.get_best_initial_image_pairs()
        if candidates:
            return candidates[0][0]

        if self.allow_user_interaction:
            return self.ask_user()

        logger.error("No valid initial pair found")
        return None
