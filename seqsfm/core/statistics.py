#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Reconstruction statistics and pluggable reporters.

Author: Michael Chen
Date: 2024-03-01
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional, Any

from seqsfm.core.features import FeatureStore
from seqsfm.core.scene import SfMReconstruction

logger = logging.getLogger(__name__)


def compute_residuals_histogram(reconstruction: SfMReconstruction,
                                features: FeatureStore,
                                num_bins: int = 10) -> Tuple[float, np.ndarray, np.ndarray]:
    """Histogram of the reprojection residuals of all observations.

    Args:
        reconstruction: Reconstruction
        features: Feature store
        num_bins: Number of histogram bins

    Returns:
        Tuple of (mean squared residual, bin counts, bin edges)
    """
    residuals = np.array([error for error, _ in reconstruction.compute_residuals(features).values()])
    if len(residuals) == 0:
        return 0.0, np.zeros(num_bins, dtype=np.int64), np.linspace(0.0, 1.0, num_bins + 1)

    counts, edges = np.histogram(residuals, bins=num_bins, range=(0.0, max(float(residuals.max()), 1e-9)))
    return float(np.mean(residuals ** 2)), counts, edges


def compute_tracks_lengths_histogram(reconstruction: SfMReconstruction,
                                     num_bins: int = 10) -> Tuple[float, np.ndarray, np.ndarray]:
    """Histogram of the number of observations of each landmark.

    Args:
        reconstruction: Reconstruction
        num_bins: Number of histogram bins

    Returns:
        Tuple of (mean track length, bin counts, bin edges)
    """
    lengths = np.array([len(lm.observations) for lm in reconstruction.landmarks.values()])
    if len(lengths) == 0:
        return 0.0, np.zeros(num_bins, dtype=np.int64), np.linspace(0.0, 1.0, num_bins + 1)

    counts, edges = np.histogram(lengths, bins=num_bins, range=(2, max(int(lengths.max()), 3)))
    return float(np.mean(lengths)), counts, edges


def compute_statistics(reconstruction: SfMReconstruction,
                       features: FeatureStore,
                       elapsed: float = 0.0,
                       num_bins: int = 10) -> Dict[str, Any]:
    """Gather summary statistics of a reconstruction."""
    mse, residual_counts, residual_edges = compute_residuals_histogram(reconstruction, features, num_bins)
    mean_length, length_counts, length_edges = compute_tracks_lengths_histogram(reconstruction, num_bins)

    return {
        "num_views": len(reconstruction.views),
        "num_reconstructed_views": len(reconstruction.poses),
        "num_remaining_views": len(reconstruction.remaining_view_ids),
        "num_points": len(reconstruction.landmarks),
        "num_observations": int(sum(len(lm.observations) for lm in reconstruction.landmarks.values())),
        "residuals_mse": mse,
        "residuals_rmse": float(np.sqrt(mse)),
        "residuals_histogram": {"counts": residual_counts.tolist(), "edges": residual_edges.tolist()},
        "mean_track_length": mean_length,
        "track_length_histogram": {"counts": length_counts.tolist(), "edges": length_edges.tolist()},
        "elapsed_seconds": elapsed,
    }


class StatisticsReporter:
    """Receives the statistics of a finished reconstruction."""

    def report(self, statistics: Dict[str, Any]) -> None:
        raise NotImplementedError("Subclasses must implement report")


class NullReporter(StatisticsReporter):
    """Reporter that discards everything."""

    def report(self, statistics: Dict[str, Any]) -> None:
        pass


class LoggingReporter(StatisticsReporter):
    """Reporter writing a summary to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def report(self, statistics: Dict[str, Any]) -> None:
        logger.log(self.level, "Reconstruction statistics:")
        logger.log(self.level, f"  Views: {statistics['num_reconstructed_views']}/{statistics['num_views']} reconstructed")
        logger.log(self.level, f"  Points: {statistics['num_points']} ({statistics['num_observations']} observations)")
        logger.log(self.level, f"  Residual RMSE: {statistics['residuals_rmse']:.3f} px")
        logger.log(self.level, f"  Mean track length: {statistics['mean_track_length']:.2f}")
        logger.log(self.level, f"  Time: {statistics['elapsed_seconds']:.2f}s")


class MemoryReporter(StatisticsReporter):
    """Reporter keeping every report in memory."""

    def __init__(self):
        self.reports = []

    def report(self, statistics: Dict[str, Any]) -> None:
        self.reports.append(statistics)
