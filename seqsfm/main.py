#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SEQSFM: Sequential Structure from Motion
Command line entry point running the incremental reconstruction on a scene
file holding views, intrinsics, features and pairwise matches.

Author: James Wei & Alex Johnson
Date: 2024-02-01
Last modified: 2024-04-02
"""

import os
import sys
import argparse
import logging
import time
import yaml

from seqsfm.core.sfm import SfMOptions, SequentialSfMEngine
from seqsfm.core.statistics import LoggingReporter
from seqsfm.utils.export import save_pointcloud
from seqsfm.utils.io_utils import load_scene, save_reconstruction
from seqsfm.config.paths import get_output_dir, get_default_config_path

logger = logging.getLogger(__name__)


def setup_logging(output_dir: str, verbose: bool = False) -> None:
    """Configure console and file logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(os.path.join(output_dir, 'seqsfm.log'), mode='w')
        ]
    )


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="SEQSFM: Sequential Structure from Motion")

    # Input options
    parser.add_argument("--input", required=True,
                        help="Scene JSON file with views, intrinsics, features and matches")
    parser.add_argument("--config", default=get_default_config_path(),
                        help="Path to configuration file")
    parser.add_argument("--output_dir", help="Directory to save outputs")

    # Reconstruction options
    parser.add_argument("--initial_pair", type=int, nargs=2, metavar=("VIEW_I", "VIEW_J"),
                        help="View IDs of the initial pair (automatic selection if omitted)")
    parser.add_argument("--unknown_camera_type", help="Lens model assumed for unknown intrinsics")
    parser.add_argument("--min_points_per_pose", type=int,
                        help="Minimum number of 2D-3D inliers to accept a pose")
    parser.add_argument("--export_intermediate", action="store_true",
                        help="Export the reconstruction after each growth round")
    parser.add_argument("--interactive", action="store_true",
                        help="Ask for an initial pair when none is found")
    parser.add_argument("--verbose", action="store_true", help="Verbose output")

    return parser.parse_args(argv)


def load_config(config_path):
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    return config or {}


def build_options(config, args, output_dir):
    """Merge YAML configuration and command line overrides into SfM options.

    Args:
        config: Configuration dictionary
        args: Parsed command line arguments
        output_dir: Output directory

    Returns:
        SfM options
    """
    values = dict(config.get("sfm") or {})
    output_config = config.get("output") or {}

    if args.initial_pair is not None:
        values["initial_pair"] = args.initial_pair
    if args.unknown_camera_type:
        values["unknown_camera_type"] = args.unknown_camera_type
    if args.min_points_per_pose is not None:
        values["min_points_per_pose"] = args.min_points_per_pose
    if args.interactive:
        values["allow_user_interaction"] = True
    if args.verbose:
        values["verbose"] = True
    if args.export_intermediate or output_config.get("export_intermediate", False):
        values["output_dir"] = os.path.join(output_dir, "intermediate")

    return SfMOptions.from_dict(values)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    output_dir = get_output_dir(args.output_dir)
    setup_logging(output_dir, args.verbose)

    config = load_config(args.config)
    try:
        options = build_options(config, args, output_dir)
        options.validate()
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger.info(f"Loading scene from {args.input}")
    scene, features, matches = load_scene(args.input)

    start_time = time.time()
    engine = SequentialSfMEngine(scene, features, matches, options, reporter=LoggingReporter())
    success = engine.process()
    logger.info(f"Reconstruction completed in {time.time() - start_time:.2f}s")

    result = engine.get_result()
    save_pointcloud_enabled = (config.get("output") or {}).get("save_pointcloud", True)
    writer = (lambda path: save_pointcloud(engine.reconstruction, path)) if save_pointcloud_enabled else None
    file_paths = save_reconstruction(result.to_dict(), output_dir, pointcloud_writer=writer)

    for name, path in file_paths.items():
        logger.info(f"Saved {name} to {path}")

    if not success:
        logger.error("Reconstruction failed")
        return 1

    logger.info(f"Reconstructed {len(result.reconstructed_view_ids)} views, "
                f"rejected {len(result.rejected_view_ids)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
