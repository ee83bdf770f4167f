from __future__ import annotations

import random

import pytest

from ttc_fusion.core.tracking.box_association import associate_bounding_boxes, count_box_votes
from ttc_fusion.types import Correspondence, Frame, Keypoint, PreconditionError, Rect, TrackedRegion


def _region(box_id: int, x: float, y: float = 0.0, w: float = 100.0, h: float = 100.0) -> TrackedRegion:
    return TrackedRegion(box_id=box_id, roi=Rect(x, y, w, h))


def _frames(prev_regions, curr_regions, pairs):
    """pairs: list of ((u0, v0), (u1, v1)) keypoint locations, one match each"""
    prev = Frame(index=0, regions=list(prev_regions), keypoints=[Keypoint(*a) for a, _ in pairs])
    curr = Frame(index=1, regions=list(curr_regions), keypoints=[Keypoint(*b) for _, b in pairs])
    matches = [Correspondence(i, i) for i in range(len(pairs))]
    return prev, curr, matches


def _votes(src, dst, n):
    return [(src, dst)] * n


# prev boxes at x=0 (id 0) and x=200 (id 1); curr boxes likewise
A, B = (50.0, 50.0), (250.0, 50.0)


def test_clear_majorities() -> None:
    pairs = _votes(A, A, 8) + _votes(A, B, 2) + _votes(B, B, 7) + _votes(B, A, 1)
    prev, curr, matches = _frames([_region(0, 0), _region(1, 200)], [_region(0, 0), _region(1, 200)], pairs)

    assert count_box_votes(matches, prev, curr) == {0: {0: 8, 1: 2}, 1: {1: 7, 0: 1}}
    assert associate_bounding_boxes(matches, prev, curr) == {0: 0, 1: 1}


def test_conflicting_nominations_keep_the_strongest() -> None:
    pairs = _votes(A, A, 8) + _votes(B, A, 5) + _votes(B, B, 2)
    prev, curr, matches = _frames([_region(0, 0), _region(1, 200)], [_region(0, 0), _region(1, 200)], pairs)

    # prev 1 nominated curr 0 and lost; it is not reassigned to curr 1
    assert associate_bounding_boxes(matches, prev, curr) == {0: 0}


def test_ties_go_to_lowest_id() -> None:
    pairs = _votes(A, A, 3) + _votes(A, B, 3)
    prev, curr, matches = _frames([_region(4, 0)], [_region(7, 0), _region(3, 200)], pairs)
    assert associate_bounding_boxes(matches, prev, curr) == {4: 3}

    pairs = _votes(A, A, 4) + _votes(B, A, 4)
    prev, curr, matches = _frames([_region(9, 0), _region(2, 200)], [_region(5, 0)], pairs)
    assert associate_bounding_boxes(matches, prev, curr) == {2: 5}


def test_result_independent_of_input_order() -> None:
    pairs = _votes(A, A, 6) + _votes(A, B, 6) + _votes(B, B, 5) + _votes(B, A, 2)
    prev_r = [_region(0, 0), _region(1, 200)]
    curr_r = [_region(0, 0), _region(1, 200)]
    prev, curr, matches = _frames(prev_r, curr_r, pairs)
    expected = associate_bounding_boxes(matches, prev, curr)

    rng = random.Random(11)
    for _ in range(10):
        shuffled = list(pairs)
        rng.shuffle(shuffled)
        p, c, m = _frames(rng.sample(prev_r, 2), rng.sample(curr_r, 2), shuffled)
        rng.shuffle(m)
        assert associate_bounding_boxes(m, p, c) == expected


def test_overlapping_boxes_both_receive_votes() -> None:
    pairs = _votes((90.0, 50.0), (90.0, 50.0), 3)
    prev, curr, matches = _frames(
        [_region(0, 0), _region(1, 80)], [_region(0, 0), _region(1, 80)], pairs
    )
    votes = count_box_votes(matches, prev, curr)
    assert votes == {0: {0: 3, 1: 3}, 1: {0: 3, 1: 3}}
    # both prev boxes nominate curr 0; prev 0 wins the tie
    assert associate_bounding_boxes(matches, prev, curr) == {0: 0}


def test_keypoints_outside_boxes_do_not_vote() -> None:
    pairs = _votes((500.0, 500.0), A, 4) + _votes(A, (500.0, 500.0), 4)
    prev, curr, matches = _frames([_region(0, 0)], [_region(0, 0)], pairs)
    assert count_box_votes(matches, prev, curr) == {}
    assert associate_bounding_boxes(matches, prev, curr) == {}


def test_result_is_injective() -> None:
    rng = random.Random(5)
    xs = [0.0, 120.0, 240.0, 360.0]
    regions = [_region(i, x) for i, x in enumerate(xs)]
    pairs = [
        ((rng.choice(xs) + 50.0, 50.0), (rng.choice(xs) + 50.0, 50.0))
        for _ in range(60)
    ]
    prev, curr, matches = _frames(regions, regions, pairs)

    result = associate_bounding_boxes(matches, prev, curr)
    assert len(set(result.values())) == len(result)
    assert list(result) == sorted(result)


def test_out_of_range_index_rejected() -> None:
    prev, curr, _ = _frames([_region(0, 0)], [_region(0, 0)], _votes(A, A, 1))
    with pytest.raises(PreconditionError):
        associate_bounding_boxes([Correspondence(0, 3)], prev, curr)
