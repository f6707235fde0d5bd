#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Pairwise match storage consumed by the reconstruction engine.

Matching itself is done upstream; this module holds the putative
correspondences between pairs of views.

Author: Alex Johnson
Date: 2024-01-20
Last modified: 2024-04-02
"""

import numpy as np
import logging
from typing import Dict, List, Tuple, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Pair = Tuple[int, int]


@dataclass
class MatchData:
    """Container for feature matching data."""
    image_pair: Pair  # Pair of view IDs (i, j) where i < j
    matches: np.ndarray  # Mx2 array of feature indices (idx_i, idx_j)
    confidence: Optional[np.ndarray] = None  # M array of match confidence scores
    match_type: str = "unknown"  # Type of matching algorithm used


class MatchStore:
    """Read-only access to pairwise correspondences.

    The store is borrowed by the engine and must outlive it.
    """

    def pairs(self) -> List[Pair]:
        """All view pairs with matches, as (i, j) with i < j."""
        raise NotImplementedError("Subclasses must implement pairs")

    def matches_for(self, pair: Pair) -> np.ndarray:
        """Get matches of a view pair.

        Args:
            pair: View pair (i, j)

        Returns:
            Mx2 array of (feature index in i, feature index in j)
        """
        raise NotImplementedError("Subclasses must implement matches_for")


class InMemoryMatchStore(MatchStore):
    """Match store backed by a dictionary of MatchData."""

    def __init__(self, matches: Optional[List[MatchData]] = None):
        """Initialize match store.

        Args:
            matches: List of match data between view pairs
        """
        self._matches_by_pair = {}
        for match in matches or []:
            self.set_match(match)

    def set_match(self, match: MatchData) -> None:
        """Set matches for a view pair; pairs are stored with i < j."""
        i, j = match.image_pair
        if i == j:
            logger.warning(f"Ignoring matches of view {i} with itself")
            return
        matches = np.asarray(match.matches, dtype=np.int64).reshape(-1, 2)
        if i > j:
            i, j = j, i
            matches = matches[:, ::-1]
        self._matches_by_pair[(i, j)] = matches

    def pairs(self) -> List[Pair]:
        return sorted(self._matches_by_pair.keys())

    def matches_for(self, pair: Pair) -> np.ndarray:
        i, j = pair
        if i <= j:
            return self._matches_by_pair.get((i, j), np.zeros((0, 2), dtype=np.int64))
        matches = self._matches_by_pair.get((j, i))
        if matches is None:
            return np.zeros((0, 2), dtype=np.int64)
        return matches[:, ::-1]

    @classmethod
    def from_arrays(cls, matches_by_pair: Dict[Pair, np.ndarray]) -> 'InMemoryMatchStore':
        """Create from plain match arrays."""
        return cls([MatchData(image_pair=pair, matches=np.asarray(m)) for pair, m in matches_by_pair.items()])
