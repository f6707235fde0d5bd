#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Path configuration module for configuration files and output directories.

Author: Michael Chen
Date: 2024-01-10
Last modified: 2024-04-02
"""

import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_OUTPUT_DIR = os.path.join(os.path.expanduser("~"), ".seqsfm", "output")
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "default_config.yaml")


def get_output_dir(custom_dir: Optional[str] = None) -> str:
    """Get output directory path.

    Args:
        custom_dir: Optional custom directory path

    Returns:
        Absolute path to output directory
    """
    output_dir = custom_dir or os.environ.get("SEQSFM_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)

    # Create directory if it doesn't exist
    os.makedirs(output_dir, exist_ok=True)

    return os.path.abspath(output_dir)


def get_default_config_path() -> str:
    """Path of the configuration file shipped with the package."""
    return DEFAULT_CONFIG_PATH
