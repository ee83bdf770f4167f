'''
Associate bounding boxes between consecutive frames by correspondence voting.

1) every correspondence votes for each (prev box, curr box) pair whose boxes
   contain its previous / current keypoint
2) each previous box nominates its most-voted current box
3) each current box keeps only its most-voted nominating previous box;
   losing previous boxes stay unmatched

Ties in 2) and 3) go to the lowest box id, independent of input order.
'''
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Sequence

from ttc_fusion.types import (
    BoxAssociationMap,
    Correspondence,
    Frame,
    check_correspondence_indices,
)

logger = logging.getLogger("ttc_fusion.tracking")

VoteTable = Dict[int, Dict[int, int]]   # prev box_id -> curr box_id -> votes


def _enclosing_ids(frame: Frame, u: float, v: float) -> List[int]:
    return [r.box_id for r in frame.regions if r.roi.contains(u, v)]


def count_box_votes(matches: Sequence[Correspondence], prev_frame: Frame, curr_frame: Frame) -> VoteTable:
    check_correspondence_indices(
        matches, len(prev_frame.keypoints), len(curr_frame.keypoints), "count_box_votes"
    )
    votes: VoteTable = defaultdict(lambda: defaultdict(int))
    for m in matches:
        kp0 = prev_frame.keypoints[m.prev_idx]
        kp1 = curr_frame.keypoints[m.curr_idx]
        prev_ids = _enclosing_ids(prev_frame, kp0.x, kp0.y)
        if not prev_ids:
            continue
        curr_ids = _enclosing_ids(curr_frame, kp1.x, kp1.y)
        for pid in prev_ids:
            for cid in curr_ids:
                votes[pid][cid] += 1
    return {pid: dict(inner) for pid, inner in votes.items() if inner}


def associate_bounding_boxes(
    matches: Sequence[Correspondence],
    prev_frame: Frame,
    curr_frame: Frame,
) -> BoxAssociationMap:
    votes = count_box_votes(matches, prev_frame, curr_frame)

    # prev -> best curr
    suitors: Dict[int, Dict[int, int]] = defaultdict(dict)  # curr -> prev -> votes
    for pid in sorted(votes):
        inner = votes[pid]
        cid = min(inner, key=lambda c: (-inner[c], c))
        suitors[cid][pid] = inner[cid]

    # curr -> best prev
    result: BoxAssociationMap = {}
    for cid in sorted(suitors):
        group = suitors[cid]
        pid = min(group, key=lambda p: (-group[p], p))
        result[pid] = cid

    logger.debug("box association: %d prev boxes voted, %d matched", len(votes), len(result))
    return dict(sorted(result.items()))
