#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
I/O utility functions for loading scenes and saving reconstructions.

Author: Michael Chen
Date: 2024-01-15
Last modified: 2024-04-02
"""

import os
import json
import logging
import numpy as np
from datetime import datetime
from typing import List, Dict, Tuple, Optional, Any

from seqsfm.core.features import FeatureData, InMemoryFeatureStore
from seqsfm.core.matching import MatchData, InMemoryMatchStore
from seqsfm.core.scene import SceneDescriptor

logger = logging.getLogger(__name__)


def ensure_dir(directory: str) -> str:
    """Ensure directory exists, creating it if necessary.

    Args:
        directory: Directory path

    Returns:
        Absolute path to directory
    """
    if directory == "":
        return directory

    directory = os.path.abspath(directory)
    if not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)

    return directory


def load_json(filepath: str) -> Dict:
    """Load JSON file.

    Args:
        filepath: Path to JSON file

    Returns:
        Loaded data
    """
    try:
        with open(filepath, 'r') as f:
            data = json.load(f)
        return data
    except Exception as e:
        logger.error(f"Failed to load JSON file {filepath}: {e}")
        raise


def save_json(data: Dict, filepath: str, indent: int = 2) -> None:
    """Save data to JSON file.

    Args:
        data: Data to save
        filepath: Output file path
        indent: JSON indentation
    """
    try:
        with open(filepath, 'w') as f:
            json.dump(data, f, indent=indent)
    except Exception as e:
        logger.error(f"Failed to save JSON file {filepath}: {e}")
        raise


def get_timestamp() -> str:
    """Get current timestamp string.

    Returns:
        Timestamp string in format "YYYY-MM-DD_HH-MM-SS"
    """
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")


def scene_from_dict(data: Dict) -> Tuple[SceneDescriptor, InMemoryFeatureStore, InMemoryMatchStore]:
    """Build scene, features and matches from a scene dictionary.

    Expected layout::

        {
          "views": [{"id": 0, "intrinsic_id": 0, "width": 640, "height": 480}, ...],
          "intrinsics": {"0": {"fx": 500, "cx": 320, "cy": 240, "model": "pinhole", ...}},
          "features": {"0": [[x, y], ...], ...},
          "matches": [{"pair": [0, 1], "matches": [[idx_0, idx_1], ...]}, ...]
        }

    Args:
        data: Scene dictionary

    Returns:
        Tuple of (scene descriptor, feature store, match store)
    """
    scene = SceneDescriptor.from_dict(data)

    features = InMemoryFeatureStore()
    for view_id, keypoints in data.get("features", {}).items():
        view = scene.views.get(int(view_id))
        image_size = view.image_size if view is not None else (0, 0)
        features.set_features(int(view_id), FeatureData(keypoints=np.array(keypoints, dtype=np.float64),
                                                        image_size=image_size))

    matches = InMemoryMatchStore()
    for entry in data.get("matches", []):
        i, j = entry["pair"]
        matches.set_match(MatchData(image_pair=(int(i), int(j)),
                                    matches=np.array(entry["matches"], dtype=np.int64).reshape(-1, 2)))

    logger.info(f"Loaded scene with {len(scene.views)} views, {len(scene.intrinsics)} intrinsics "
                f"and {len(matches.pairs())} matched pairs")
    return scene, features, matches


def load_scene(filepath: str) -> Tuple[SceneDescriptor, InMemoryFeatureStore, InMemoryMatchStore]:
    """Load scene, features and matches from a JSON file."""
    return scene_from_dict(load_json(filepath))


def save_reconstruction(data: Dict[str, Any], output_dir: str, pointcloud_writer=None) -> Dict[str, str]:
    """Save reconstruction results to files.

    Args:
        data: Result dictionary (see ``SfMResult.to_dict``)
        output_dir: Output directory
        pointcloud_writer: Optional callable writing the point cloud to a path

    Returns:
        Dictionary of saved file paths
    """
    ensure_dir(output_dir)

    file_paths = {}

    reconstruction_path = os.path.join(output_dir, 'reconstruction.json')
    save_json({k: v for k, v in data.items() if k != 'statistics'}, reconstruction_path)
    file_paths['reconstruction'] = reconstruction_path

    if data.get('statistics'):
        statistics_path = os.path.join(output_dir, 'statistics.json')
        save_json(data['statistics'], statistics_path)
        file_paths['statistics'] = statistics_path

    if pointcloud_writer is not None:
        sparse_path = os.path.join(output_dir, 'sparse_pointcloud.ply')
        if pointcloud_writer(sparse_path):
            file_paths['sparse_pointcloud'] = sparse_path

    metadata = {
        'timestamp': get_timestamp(),
        'file_paths': file_paths
    }

    metadata_path = os.path.join(output_dir, 'metadata.json')
    save_json(metadata, metadata_path)

    return file_paths
