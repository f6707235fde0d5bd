#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Sequential Structure from Motion engine.

Builds tracks from pairwise matches, seeds the reconstruction with the best
image pair and grows it view by view: next-best-view selection with pyramid
scores, robust resection, triangulation, bundle adjustment and outlier
rejection, until no remaining view can be localized.

Author: James Wei
Date: 2024-01-25
Last modified: 2024-04-02
"""

import numpy as np
import logging
import time
from enum import Enum
from typing import Dict, List, Tuple, Optional, Any, Callable
from dataclasses import dataclass, field, asdict, fields

from seqsfm.core.bundle_adjustment import BundleAdjuster, ScipyBundleAdjuster, LOSS_FUNCTIONS
from seqsfm.core.camera import Camera, CameraExtrinsics, CAMERA_MODELS
from seqsfm.core.features import FeatureStore
from seqsfm.core.geometry import (RelativePoseEstimator, PoseEstimator, PointTriangulator,
                                  EssentialMatrixEstimator, PnPRansacEstimator, DLTTriangulator)
from seqsfm.core.initial_pair import InitialPairSelector, Pair
from seqsfm.core.matching import MatchStore
from seqsfm.core.outliers import OutlierRejector
from seqsfm.core.pyramid import ViewScorer
from seqsfm.core.resection import Resectioner
from seqsfm.core.scene import SceneDescriptor, SfMReconstruction, Landmark
from seqsfm.core.statistics import StatisticsReporter, NullReporter, compute_statistics
from seqsfm.core.tracks import TrackStore, build_tracks
from seqsfm.core.triangulation import Triangulator
from seqsfm.utils.export import export_intermediate

logger = logging.getLogger(__name__)

INTERMEDIATE_EXTENSIONS = (".ply", ".json")


@dataclass
class SfMOptions:
    """Options for sequential Structure from Motion."""
    initial_pair: Optional[Tuple[int, int]] = None  # Seed pair, None for automatic selection
    unknown_camera_type: str = "radial3"  # Lens model assumed for unknown intrinsics
    default_focal_ratio: float = 1.2  # Focal guess as a multiple of the largest image side
    sfmdata_inter_file_extension: str = ".ply"  # Format of intermediate exports
    allow_user_interaction: bool = False  # Ask for a seed pair when none is found
    min_input_track_length: int = 2  # Minimum number of views per input track
    min_track_length: int = 2  # Minimum number of observations per 3D point
    min_points_per_pose: int = 30  # Minimum number of 2D-3D inliers to accept a pose
    pyramid_base: int = 2  # Branching factor of the scoring pyramid
    pyramid_depth: int = 5  # Number of pyramid levels
    pyramid_threshold_ratio: float = 0.05  # Fraction of the max pyramid score to be connected
    initial_pair_min_tracks: int = 30  # Minimum shared tracks (and valid points) of a seed pair
    initial_pair_min_angle: float = 3.0  # Minimum median triangulation angle of the seed (degrees)
    initial_pair_max_angle: float = 60.0  # Maximum median triangulation angle of the seed (degrees)
    min_seed_points: int = 25  # Minimum number of seed points
    max_reprojection_error: float = 4.0  # Residual gate of seed points (pixels)
    camera_threshold_floor: float = 4.0  # Lower bound of per-camera thresholds (pixels)
    min_triangulation_angle: float = 2.0  # Minimum ray angle of a 3D point (degrees)
    group_score_ratio: float = 0.75  # Relative score needed to join the best view in a batch
    max_images_per_group: int = 30  # Maximum batch size
    fixed_intrinsics_rounds: int = 1  # Growth rounds refined with fixed intrinsics
    rejection_precision: float = 4.0  # Residual threshold of outlier rejection (pixels)
    rejection_count: int = 50  # Removals above which refinement is repeated
    max_refine_iterations: int = 5  # Maximum bundle adjustment / rejection iterations
    max_rejection_passes: int = 10  # Maximum passes of one rejection call
    ransac_threshold: float = 4.0  # Relative pose RANSAC threshold (pixels)
    pnp_threshold: float = 4.0  # Resection RANSAC threshold (pixels)
    pnp_iterations: int = 1000  # Resection RANSAC iterations
    ba_max_nfev: int = 100  # Maximum function evaluations of bundle adjustment
    ba_loss: str = "linear"  # Loss of bundle adjustment (linear, soft_l1, huber, cauchy, arctan)
    ba_f_scale: float = 1.0  # Soft margin of a robust bundle adjustment loss (pixels)
    output_dir: Optional[str] = None  # Directory of intermediate exports
    verbose: bool = False  # Verbose output

    def validate(self) -> None:
        """Check option consistency.

        Raises:
            ValueError: If an option is out of range
        """
        if self.initial_pair is not None:
            if len(self.initial_pair) != 2 or self.initial_pair[0] == self.initial_pair[1]:
                raise ValueError(f"initial_pair must hold two distinct view IDs: {self.initial_pair}")
        if self.unknown_camera_type not in CAMERA_MODELS:
            raise ValueError(f"Unknown camera type: {self.unknown_camera_type}")
        if self.sfmdata_inter_file_extension not in INTERMEDIATE_EXTENSIONS:
            raise ValueError(f"Unsupported intermediate file extension: {self.sfmdata_inter_file_extension}")
        if self.default_focal_ratio <= 0:
            raise ValueError("default_focal_ratio must be positive")
        if self.min_input_track_length < 2 or self.min_track_length < 2:
            raise ValueError("Track lengths must be at least 2")
        if self.min_points_per_pose < 6:
            raise ValueError("min_points_per_pose must be at least 6")
        if self.pyramid_base < 2 or self.pyramid_depth < 1:
            raise ValueError("pyramid_base must be >= 2 and pyramid_depth >= 1")
        if not 0.0 <= self.pyramid_threshold_ratio <= 1.0:
            raise ValueError("pyramid_threshold_ratio must be in [0, 1]")
        if not 0.0 <= self.initial_pair_min_angle < self.initial_pair_max_angle:
            raise ValueError("Initial pair angle range is empty")
        if not 0.0 < self.group_score_ratio <= 1.0:
            raise ValueError("group_score_ratio must be in (0, 1]")
        if self.max_images_per_group < 1:
            raise ValueError("max_images_per_group must be at least 1")
        if self.camera_threshold_floor <= 0 or self.rejection_precision <= 0:
            raise ValueError("Pixel thresholds must be positive")
        if self.max_refine_iterations < 1 or self.max_rejection_passes < 1:
            raise ValueError("Iteration limits must be at least 1")
        if self.ba_loss not in LOSS_FUNCTIONS:
            raise ValueError(f"Unknown bundle adjustment loss: {self.ba_loss}")
        if self.ba_f_scale <= 0:
            raise ValueError("ba_f_scale must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        if self.initial_pair is not None:
            data["initial_pair"] = list(self.initial_pair)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SfMOptions':
        """Create from dictionary; unknown keys are ignored with a warning."""
        names = {f.name for f in fields(cls)}
        unknown = set(data) - names
        if unknown:
            logger.warning(f"Ignoring unknown SfM options: {sorted(unknown)}")
        values = {k: v for k, v in data.items() if k in names}
        if values.get("initial_pair") is not None:
            values["initial_pair"] = tuple(int(v) for v in values["initial_pair"])
        return cls(**values)


class EngineState(Enum):
    """Lifecycle of a reconstruction engine."""
    UNINITIALIZED = "uninitialized"
    TRACKS_BUILT = "tracks_built"
    SEED_ESTABLISHED = "seed_established"
    GROWING = "growing"
    CONVERGED = "converged"
    ABORTED = "aborted"


@dataclass
class ViewConnectionScore:
    """Connection of a remaining view to the current reconstruction."""
    view_id: int
    shared_point_count: int
    pyramid_score: int
    has_intrinsics: bool  # Intrinsics already estimated on another view


@dataclass
class SfMResult:
    """Outcome of a reconstruction."""
    success: bool
    cameras: Dict[int, Camera] = field(default_factory=dict)
    landmarks: Dict[int, Landmark] = field(default_factory=dict)
    reconstructed_view_ids: List[int] = field(default_factory=list)
    rejected_view_ids: List[int] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "success": self.success,
            "cameras": {str(view_id): camera.to_dict() for view_id, camera in self.cameras.items()},
            "points": [lm.to_dict() for lm in self.landmarks.values()],
            "reconstructed_view_ids": self.reconstructed_view_ids,
            "rejected_view_ids": self.rejected_view_ids,
            "statistics": self.statistics,
        }


class ReconstructionEngine:
    """Capability interface of a reconstruction engine."""

    def configure(self, options: SfMOptions) -> None:
        raise NotImplementedError("Subclasses must implement configure")

    def process(self) -> bool:
        raise NotImplementedError("Subclasses must implement process")

    def get_result(self) -> SfMResult:
        raise NotImplementedError("Subclasses must implement get_result")


class SequentialSfMEngine(ReconstructionEngine):
    """Incremental Structure from Motion."""

    def __init__(self,
                 scene: SceneDescriptor,
                 features: FeatureStore,
                 matches: MatchStore,
                 options: Optional[SfMOptions] = None,
                 relative_pose_estimator: Optional[RelativePoseEstimator] = None,
                 pose_estimator: Optional[PoseEstimator] = None,
                 point_triangulator: Optional[PointTriangulator] = None,
                 bundle_adjuster: Optional[BundleAdjuster] = None,
                 reporter: Optional[StatisticsReporter] = None,
                 prompt: Optional[Callable[[str], str]] = None):
        """Initialize engine.

        The feature and match stores, as well as the solvers, are borrowed
        and must outlive the engine.

        Args:
            scene: Views and initial intrinsics
            features: Feature store
            matches: Match store
            options: SfM options
            relative_pose_estimator: Two-view solver (essential matrix by default)
            pose_estimator: Resection solver (PnP RANSAC by default)
            point_triangulator: Multi-view triangulation (DLT by default)
            bundle_adjuster: Bundle adjustment (scipy by default)
            reporter: Receives the final statistics (discarded by default)
            prompt: Callable used to ask the user for an initial pair
        """
        self.scene = scene
        self.features = features
        self.matches = matches
        self.options = options or SfMOptions()
        self.options.validate()

        self._relative_pose_estimator = relative_pose_estimator
        self._pose_estimator = pose_estimator
        self._point_triangulator = point_triangulator
        self._bundle_adjuster = bundle_adjuster
        self.reporter = reporter or NullReporter()
        self.prompt = prompt

        self.state = EngineState.UNINITIALIZED
        self.reconstruction = SfMReconstruction(scene)
        self.tracks = None  # TrackStore
        self.scorer = None  # ViewScorer
        self.statistics = {}

        self._rejected_at = {}  # view_id -> number of reconstructed views when its resection failed
        self._round = 0
        self._start_time = None

    def configure(self, options: SfMOptions) -> None:
        """Replace the options of an engine that has not started."""
        if self.state != EngineState.UNINITIALIZED:
            raise RuntimeError(f"Cannot configure engine in state {self.state.value}")
        options.validate()
        self.options = options

    def _setup_components(self) -> None:
        """Create the components working on the track store."""
        options = self.options

        self.relative_pose_estimator = self._relative_pose_estimator or EssentialMatrixEstimator(
            threshold=options.ransac_threshold)
        self.pose_estimator = self._pose_estimator or PnPRansacEstimator(
            threshold=options.pnp_threshold, iterations=options.pnp_iterations)
        self.point_triangulator = self._point_triangulator or DLTTriangulator()
        self.bundle_adjuster = self._bundle_adjuster or ScipyBundleAdjuster(
            max_nfev=options.ba_max_nfev, loss=options.ba_loss, f_scale=options.ba_f_scale)

        image_sizes = {view_id: view.image_size for view_id, view in self.reconstruction.views.items()}
        self.scorer = ViewScorer(
            self.features, self.tracks, image_sizes,
            pyramid_base=options.pyramid_base,
            pyramid_depth=options.pyramid_depth,
            threshold_ratio=options.pyramid_threshold_ratio
        )
        self.initial_pair_selector = InitialPairSelector(
            self.reconstruction, self.features, self.tracks, self.scorer,
            self.relative_pose_estimator, self.point_triangulator,
            min_tracks=options.initial_pair_min_tracks,
            min_angle=options.initial_pair_min_angle,
            max_angle=options.initial_pair_max_angle,
            default_model=options.unknown_camera_type,
            focal_ratio=options.default_focal_ratio,
            allow_user_interaction=options.allow_user_interaction,
            prompt=self.prompt,
            verbose=options.verbose
        )
        self.resectioner = Resectioner(
            self.reconstruction, self.features, self.tracks, self.pose_estimator,
            min_points_per_pose=options.min_points_per_pose,
            camera_threshold_floor=options.camera_threshold_floor,
            default_model=options.unknown_camera_type,
            focal_ratio=options.default_focal_ratio,
            verbose=options.verbose
        )
        self.triangulator = Triangulator(
            self.reconstruction, self.features, self.tracks, self.point_triangulator,
            scorer=self.scorer,
            min_triangulation_angle=options.min_triangulation_angle,
            camera_threshold_floor=options.camera_threshold_floor,
            verbose=options.verbose
        )
        self.rejector = OutlierRejector(
            self.reconstruction, self.features, self.tracks,
            min_track_length=options.min_track_length,
            min_triangulation_angle=options.min_triangulation_angle,
            max_passes=options.max_rejection_passes
        )

    def init_landmark_tracks(self) -> bool:
        """Build tracks from the pairwise matches.

        Returns:
            True if at least one track was built
        """
        tracks = build_tracks(self.matches, self.options.min_input_track_length, self.options.verbose)

        # Observations of views missing from the scene are dropped
        known_views = set(self.reconstruction.views.keys())
        for track_id in list(tracks.tracks.keys()):
            track = tracks.get(track_id)
            for view_id in [v for v in track.observations if v not in known_views]:
                logger.warning(f"Track {track_id} observed in unknown view {view_id}")
                tracks.remove_observation(track_id, view_id)
            if track.length < self.options.min_input_track_length:
                tracks.remove_track(track_id)

        if len(tracks) == 0:
            logger.error("No track could be built from the matches")
            return False

        self.tracks = tracks
        self._setup_components()
        self.state = EngineState.TRACKS_BUILT
        return True

    def get_best_initial_image_pairs(self) -> List[Tuple[Pair, float]]:
        """Ranked seed pair candidates, best first."""
        return self.initial_pair_selector.get_best_initial_image_pairs()

    def choose_initial_pair(self) -> Optional[Pair]:
        """Seed pair from the options, or the best automatic candidate."""
        return self.initial_pair_selector.choose_initial_pair(self.options.initial_pair)

    def make_initial_pair_3d(self, pair: Pair) -> bool:
        """Reconstruct the seed pair and its shared points.

        The first view is placed at the origin and becomes the reference
        view; nothing is committed when the seed is too weak.

        Args:
            pair: Seed pair (i, j)

        Returns:
            True if the seed was committed
        """
        options = self.options
        i, j = pair
        track_ids = sorted(self.tracks.common_tracks([i, j]))
        if len(track_ids) < options.min_seed_points:
            logger.warning(f"Seed pair {pair} shares only {len(track_ids)} tracks")
            return False

        intrinsics_i = self.reconstruction.resolved_intrinsics(i, options.unknown_camera_type,
                                                               options.default_focal_ratio)
        intrinsics_j = self.reconstruction.resolved_intrinsics(j, options.unknown_camera_type,
                                                               options.default_focal_ratio)

        points_i = self.features.features_for(i)[[self.tracks.get(tid).observations[i] for tid in track_ids]]
        points_j = self.features.features_for(j)[[self.tracks.get(tid).observations[j] for tid in track_ids]]

        pose = self.relative_pose_estimator.estimate_relative_pose(intrinsics_i, intrinsics_j, points_i, points_j)
        if pose is None:
            logger.warning(f"Relative pose estimation failed for seed pair {pair}")
            return False

        camera_i = Camera(intrinsics_i, CameraExtrinsics.identity())
        camera_j = Camera(intrinsics_j, CameraExtrinsics(R=pose.R, t=pose.t))
        max_error = max(options.camera_threshold_floor, options.max_reprojection_error)

        landmarks = []
        errors_i = []
        errors_j = []
        for index in np.flatnonzero(pose.inliers):
            track_id = track_ids[index]
            observed = np.vstack([points_i[index], points_j[index]])
            point = self.point_triangulator.triangulate([camera_i, camera_j], observed)
            if point is None:
                continue
            error_i, depth_i = camera_i.residuals(point.reshape(1, 3), observed[0:1])
            error_j, depth_j = camera_j.residuals(point.reshape(1, 3), observed[1:2])
            if depth_i[0] <= 0 or depth_j[0] <= 0 or max(error_i[0], error_j[0]) > max_error:
                continue
            track = self.tracks.get(track_id)
            landmarks.append(Landmark(
                track_id=track_id,
                position=np.asarray(point, dtype=np.float64),
                observations={i: track.observations[i], j: track.observations[j]}
            ))
            errors_i.append(error_i[0])
            errors_j.append(error_j[0])

        if len(landmarks) < options.min_seed_points:
            logger.warning(f"Seed pair {pair} gives only {len(landmarks)} valid points "
                           f"(minimum {options.min_seed_points})")
            return False

        # Commit
        self.reconstruction.intrinsics[self.reconstruction.views[i].intrinsic_id] = intrinsics_i
        self.reconstruction.intrinsics[self.reconstruction.views[j].intrinsic_id] = intrinsics_j
        self.reconstruction.add_pose(i, camera_i.extrinsics)
        self.reconstruction.add_pose(j, camera_j.extrinsics)
        self.reconstruction.reference_view_id = i
        self.reconstruction.scale_view_id = j
        self.reconstruction.set_camera_threshold(i, max(errors_i), options.camera_threshold_floor)
        self.reconstruction.set_camera_threshold(j, max(errors_j), options.camera_threshold_floor)
        for landmark in landmarks:
            self.reconstruction.add_landmark(landmark)
        self.scorer.invalidate(i)
        self.scorer.invalidate(j)

        logger.info(f"Initial pair {pair}: {len(landmarks)} points from {pose.num_inliers} inliers")
        return True

    def _establish_seed(self) -> bool:
        """Try seed pairs until one can be reconstructed."""
        if self.options.initial_pair is not None:
            pair = self.choose_initial_pair()
            return pair is not None and self.make_initial_pair_3d(pair)

        for pair, score in self.get_best_initial_image_pairs():
            logger.info(f"Trying initial pair {pair} (score {score:.1f})")
            if self.make_initial_pair_3d(pair):
                return True

        if self.options.allow_user_interaction:
            pair = self.initial_pair_selector.ask_user()
            return pair is not None and self.make_initial_pair_3d(pair)

        return False

    def find_connected_views(self) -> List[ViewConnectionScore]:
        """Score the remaining views seeing enough reconstructed points.

        Returns:
            Views above the pyramid threshold, by decreasing score
        """
        landmark_ids = set(self.reconstruction.landmarks.keys())
        reconstructed_intrinsics = self.reconstruction.reconstructed_intrinsic_ids

        connected = []
        for view_id in sorted(self.reconstruction.remaining_view_ids):
            shared = self.tracks.tracks_in_view(view_id) & landmark_ids
            if not shared:
                continue
            score = self.scorer.score(view_id, shared)
            if score < self.scorer.threshold:
                continue
            connected.append(ViewConnectionScore(
                view_id=view_id,
                shared_point_count=len(shared),
                pyramid_score=score,
                has_intrinsics=self.reconstruction.views[view_id].intrinsic_id in reconstructed_intrinsics
            ))

        connected.sort(key=lambda c: (-c.pyramid_score, c.view_id))
        return connected

    def find_next_images_group_for_resection(self) -> List[int]:
        """Select the next batch of views to resect.

        Returns:
            View IDs in priority order; empty when growth has stalled
        """
        num_reconstructed = len(self.reconstruction.poses)
        eligible = [c for c in self.find_connected_views()
                    if c.shared_point_count >= self.options.min_points_per_pose
                    and self._rejected_at.get(c.view_id) != num_reconstructed]
        if not eligible:
            return []

        min_score = self.options.group_score_ratio * eligible[0].pyramid_score
        group = []
        for connection in eligible:
            if len(group) >= self.options.max_images_per_group or connection.pyramid_score < min_score:
                break
            group.append(connection.view_id)
            # New intrinsics are first estimated from a single view
            if not connection.has_intrinsics:
                break

        return group

    def resection(self, view_id: int) -> bool:
        """Localize one view against the current points."""
        return self.resectioner.resection(view_id)

    def robust_resection_of_images(self, view_ids: List[int]) -> Tuple[List[int], List[int]]:
        """Resect a batch of views.

        Failed views are skipped until the reconstruction grows.

        Returns:
            Tuple of (reconstructed view IDs, rejected view IDs)
        """
        num_reconstructed = len(self.reconstruction.poses)
        reconstructed, rejected = self.resectioner.robust_resection_of_images(view_ids)
        for view_id in rejected:
            self._rejected_at[view_id] = num_reconstructed
        return reconstructed, rejected

    def triangulate(self, previous_views: List[int], new_views: List[int]) -> int:
        """Triangulate tracks linking new views to the reconstruction."""
        return self.triangulator.triangulate(previous_views, new_views)

    def bundle_adjustment(self, fixed_intrinsics: bool) -> bool:
        """Refine the whole reconstruction.

        Returns:
            False if the adjustment failed; the state is then unchanged
        """
        return self.bundle_adjuster.optimize(self.reconstruction, self.features, fixed_intrinsics)

    def bad_track_rejector(self, precision: float, count: int) -> bool:
        """Remove outliers; True if more than ``count`` elements were removed."""
        return self.rejector.reject(precision, count)

    def _refine(self, fixed_intrinsics: bool) -> None:
        """Alternate bundle adjustment and outlier rejection."""
        for iteration in range(self.options.max_refine_iterations):
            if not self.bundle_adjustment(fixed_intrinsics):
                logger.warning(f"Bundle adjustment failed (iteration {iteration + 1})")
            if not self.bad_track_rejector(self.options.rejection_precision, self.options.rejection_count):
                break

    def _export_intermediate(self) -> None:
        if not self.options.output_dir:
            return
        export_intermediate(self.reconstruction, self.options.output_dir, self._round,
                            self.options.sfmdata_inter_file_extension)

    def _abort(self, reason: str) -> bool:
        logger.error(f"Reconstruction aborted: {reason}")
        self.state = EngineState.ABORTED
        return False

    def process(self) -> bool:
        """Run the whole reconstruction.

        Returns:
            True if the reconstruction was seeded; views that could not be
            localized are reported as rejected
        """
        if self.state != EngineState.UNINITIALIZED:
            logger.error(f"Engine already run (state {self.state.value})")
            return False

        self._start_time = time.time()

        if not self.init_landmark_tracks():
            return self._abort("no usable tracks")
        logger.info(f"{len(self.tracks)} tracks over {len(self.reconstruction.views)} views")

        if not self._establish_seed():
            return self._abort("no valid initial pair")
        self.state = EngineState.SEED_ESTABLISHED

        self._refine(fixed_intrinsics=True)
        self._export_intermediate()

        self.state = EngineState.GROWING
        while True:
            group = self.find_next_images_group_for_resection()
            if not group:
                break

            self._round += 1
            previous_views = sorted(self.reconstruction.poses.keys())
            logger.info(f"Round {self._round}: resecting views {group}")

            reconstructed, rejected = self.robust_resection_of_images(group)
            if rejected:
                logger.warning(f"Round {self._round}: resection failed for views {rejected}")
            if not reconstructed:
                continue

            self.triangulate(previous_views, reconstructed)
            self._refine(fixed_intrinsics=self._round <= self.options.fixed_intrinsics_rounds)
            self._export_intermediate()

            logger.info(f"Round {self._round}: {len(self.reconstruction.poses)} views, "
                        f"{len(self.reconstruction.landmarks)} points, "
                        f"{len(self.reconstruction.remaining_view_ids)} remaining")

        self.state = EngineState.CONVERGED

        # Final refinement with all intrinsics free
        if not self.bundle_adjustment(fixed_intrinsics=False):
            logger.warning("Final bundle adjustment failed")
        self.bad_track_rejector(self.options.rejection_precision, self.options.rejection_count)
        self.reconstruction.update_landmark_errors(self.features)

        self.statistics = compute_statistics(self.reconstruction, self.features,
                                             elapsed=time.time() - self._start_time)
        self.reporter.report(self.statistics)

        if self.reconstruction.remaining_view_ids:
            logger.warning(f"Views not reconstructed: {sorted(self.reconstruction.remaining_view_ids)}")
        logger.info(f"Reconstruction finished: {len(self.reconstruction.poses)} views, "
                    f"{len(self.reconstruction.landmarks)} points")
        return True

    def get_result(self) -> SfMResult:
        """Current reconstruction as a result record."""
        return SfMResult(
            success=self.state == EngineState.CONVERGED,
            cameras=self.reconstruction.get_cameras(),
            landmarks=dict(self.reconstruction.landmarks),
            reconstructed_view_ids=sorted(self.reconstruction.poses.keys()),
            rejected_view_ids=sorted(self.reconstruction.remaining_view_ids),
            statistics=dict(self.statistics)
        )
