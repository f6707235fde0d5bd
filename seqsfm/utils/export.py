#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Export of reconstructions as point clouds and JSON scenes.

Author: Michael Chen
Date: 2024-03-04
Last modified: 2024-04-02
"""

import os
import numpy as np
import logging
from typing import Dict, List, Tuple, Optional

from seqsfm.core.scene import SfMReconstruction
from seqsfm.utils.io_utils import ensure_dir, save_json

logger = logging.getLogger(__name__)


def reconstruction_to_pointcloud(reconstruction: SfMReconstruction):
    """Convert reconstruction landmarks to an Open3D point cloud.

    Args:
        reconstruction: Reconstruction

    Returns:
        Open3D point cloud
    """
    import open3d as o3d

    points = [lm.to_tuple() for lm in reconstruction.landmarks.values()]
    colors = [lm.color / 255.0 for lm in reconstruction.landmarks.values()]  # Normalize to [0, 1]

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.array(points, dtype=np.float64).reshape(-1, 3))
    pcd.colors = o3d.utility.Vector3dVector(np.array(colors, dtype=np.float64).reshape(-1, 3))

    return pcd


def save_pointcloud(reconstruction: SfMReconstruction, filepath: str) -> bool:
    """Write reconstruction landmarks to a point cloud file (PLY, PCD...).

    Args:
        reconstruction: Reconstruction
        filepath: Output file path

    Returns:
        True if the file was written
    """
    try:
        import open3d as o3d
    except ImportError:
        logger.warning("open3d not installed, skipping point cloud saving")
        return False

    pcd = reconstruction_to_pointcloud(reconstruction)
    if not o3d.io.write_point_cloud(filepath, pcd):
        logger.error(f"Failed to save point cloud {filepath}")
        return False
    return True


def intermediate_filename(round_index: int, num_views: int, extension: str) -> str:
    """Name of the export written after a growth round."""
    return f"sfm_{round_index:02d}_{num_views:02d}{extension}"


def export_intermediate(reconstruction: SfMReconstruction,
                        output_dir: str,
                        round_index: int,
                        extension: str = ".ply") -> Optional[str]:
    """Export the reconstruction state after a growth round.

    Args:
        reconstruction: Reconstruction
        output_dir: Output directory
        round_index: Growth round (0 for the seed)
        extension: ".ply" for a point cloud, ".json" for the full scene

    Returns:
        Path of the written file or None
    """
    ensure_dir(output_dir)
    filepath = os.path.join(output_dir, intermediate_filename(round_index, len(reconstruction.poses), extension))

    if extension == ".json":
        save_json(reconstruction.to_dict(), filepath)
    elif not save_pointcloud(reconstruction, filepath):
        return None

    logger.debug(f"Saved intermediate reconstruction to {filepath}")
    return filepath
