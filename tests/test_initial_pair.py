import pytest

from seqsfm.core.geometry import EssentialMatrixEstimator, DLTTriangulator
from seqsfm.core.initial_pair import InitialPairSelector, parse_pair
from seqsfm.core.pyramid import ViewScorer
from seqsfm.core.scene import SfMReconstruction
from seqsfm.core.tracks import build_tracks


def make_selector(synthetic, view_ids=None, **kwargs):
    scene, features, matches = synthetic.build(view_ids)
    tracks = build_tracks(matches)
    reconstruction = SfMReconstruction(scene)
    scorer = ViewScorer(features, tracks, {v: view.image_size for v, view in scene.views.items()})
    return InitialPairSelector(reconstruction, features, tracks, scorer,
                               EssentialMatrixEstimator(), DLTTriangulator(), **kwargs)


def test_candidates_are_ranked(synthetic):
    selector = make_selector(synthetic)
    candidates = selector.get_best_initial_image_pairs()

    assert candidates
    scores = [score for _, score in candidates]
    assert scores == sorted(scores, reverse=True)
    for (i, j), score in candidates:
        assert i < j
        assert score > 0


def test_ranking_is_deterministic(synthetic):
    first = make_selector(synthetic).get_best_initial_image_pairs()
    second = make_selector(synthetic).get_best_initial_image_pairs()

    assert [pair for pair, _ in first] == [pair for pair, _ in second]
    for (_, a), (_, b) in zip(first, second):
        assert a == pytest.approx(b)


def test_angle_range_filters_pairs(synthetic):
    selector = make_selector(synthetic, min_angle=80.0, max_angle=89.0)
    assert selector.get_best_initial_image_pairs() == []
    assert selector.choose_initial_pair() is None


def test_explicit_pair_is_validated(synthetic):
    selector = make_selector(synthetic)

    assert selector.choose_initial_pair((3, 1)) == (3, 1)
    assert selector.choose_initial_pair((2, 2)) is None
    assert selector.choose_initial_pair((0, 99)) is None


def test_automatic_choice_is_best_candidate(synthetic):
    selector = make_selector(synthetic)
    best = selector.get_best_initial_image_pairs()[0][0]

    assert selector.choose_initial_pair() == best


def test_user_prompt_when_no_candidate(synthetic):
    asked = []

    def prompt(message):
        asked.append(message)
        return "0, 1"

    selector = make_selector(synthetic, min_tracks=100000, allow_user_interaction=True, prompt=prompt)
    assert selector.choose_initial_pair() == (0, 1)
    assert len(asked) == 1

    silent = make_selector(synthetic, min_tracks=100000, prompt=prompt)
    assert silent.choose_initial_pair() is None
    assert len(asked) == 1


def test_parse_pair():
    assert parse_pair("3 7") == (3, 7)
    assert parse_pair("3,7") == (3, 7)
    assert parse_pair("3") is None
    assert parse_pair("a b") is None
