#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Landmark track construction from pairwise feature correspondences.

A track gathers the observations of one putative 3D point across views.
Tracks are the connected components of the graph whose nodes are
(view, feature) pairs and whose edges are the pairwise matches.

Author: James Wei
Date: 2024-02-12
Last modified: 2024-04-02
"""

import logging
from typing import Dict, List, Tuple, Optional, Set, Iterable
from dataclasses import dataclass, field
from collections import defaultdict

import networkx as nx
from tqdm import tqdm

from seqsfm.core.matching import MatchStore

logger = logging.getLogger(__name__)


@dataclass
class Track:
    """Feature track across multiple views."""
    id: int
    observations: Dict[int, int] = field(default_factory=dict)  # view_id -> feature_idx

    @property
    def length(self) -> int:
        """Get track length (number of observations)."""
        return len(self.observations)


class TrackStore:
    """Tracks map plus its inverse index (tracks per view).

    Every mutation goes through this class so both maps stay the exact
    inverse of each other.
    """

    def __init__(self, tracks: Optional[Dict[int, Track]] = None):
        """Initialize track store.

        Args:
            tracks: Mapping of track ID to track
        """
        self.tracks = {}  # track_id -> Track
        self.tracks_per_view = defaultdict(set)  # view_id -> set of track_id
        for track in (tracks or {}).values():
            self.add_track(track)

    def __len__(self) -> int:
        return len(self.tracks)

    def __contains__(self, track_id: int) -> bool:
        return track_id in self.tracks

    def get(self, track_id: int) -> Optional[Track]:
        return self.tracks.get(track_id)

    def add_track(self, track: Track) -> None:
        self.tracks[track.id] = track
        for view_id in track.observations:
            self.tracks_per_view[view_id].add(track.id)

    def tracks_in_view(self, view_id: int) -> Set[int]:
        """Track IDs visible in a view."""
        return self.tracks_per_view.get(view_id, set())

    def common_tracks(self, view_ids: Iterable[int]) -> Set[int]:
        """Track IDs visible in all given views."""
        view_ids = list(view_ids)
        if not view_ids:
            return set()
        common = set(self.tracks_in_view(view_ids[0]))
        for view_id in view_ids[1:]:
            common &= self.tracks_in_view(view_id)
        return common

    def remove_observation(self, track_id: int, view_id: int) -> None:
        """Remove one observation from a track."""
        track = self.tracks.get(track_id)
        if track is None or view_id not in track.observations:
            return
        del track.observations[view_id]
        self._unindex(view_id, track_id)

    def remove_track(self, track_id: int) -> None:
        """Remove a track and all of its observations."""
        track = self.tracks.pop(track_id, None)
        if track is None:
            return
        for view_id in track.observations:
            self._unindex(view_id, track_id)

    def _unindex(self, view_id: int, track_id: int) -> None:
        view_tracks = self.tracks_per_view.get(view_id)
        if view_tracks is None:
            return
        view_tracks.discard(track_id)
        if not view_tracks:
            del self.tracks_per_view[view_id]


def build_tracks(match_store: MatchStore,
                 min_track_length: int = 2,
                 verbose: bool = False) -> TrackStore:
    """Build landmark tracks from pairwise matches.

    Connected components of the (view, feature) graph become tracks. A
    component holding two different features of the same view is
    inconsistent and discarded, as is one spanning fewer than
    ``min_track_length`` views.

    Args:
        match_store: Pairwise correspondences
        min_track_length: Minimum number of views per track
        verbose: Show a progress bar

    Returns:
        Track store with sequential track IDs
    """
    graph = nx.Graph()

    for i, j in tqdm(match_store.pairs(), desc="Building tracks", disable=not verbose):
        for idx_i, idx_j in match_store.matches_for((i, j)):
            graph.add_edge((i, int(idx_i)), (j, int(idx_j)))

    # Deterministic ordering: components sorted by their smallest node
    components = sorted((sorted(component) for component in nx.connected_components(graph)),
                        key=lambda nodes: nodes[0])

    tracks = {}
    num_conflicts = 0
    num_short = 0

    for nodes in components:
        observations = {}
        conflict = False
        for view_id, feature_idx in nodes:
            if view_id in observations:
                conflict = True
                break
            observations[view_id] = feature_idx

        if conflict:
            num_conflicts += 1
            continue

        if len(observations) < min_track_length:
            num_short += 1
            continue

        track_id = len(tracks)
        tracks[track_id] = Track(id=track_id, observations=observations)

    logger.info(f"Built {len(tracks)} tracks from {len(components)} components "
                f"({num_conflicts} inconsistent, {num_short} too short)")

    return TrackStore(tracks)
