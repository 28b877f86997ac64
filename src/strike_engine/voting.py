"""
Ballot validation and vote tallying.
"""

import logging
from typing import Dict, List, Optional

from .constants import MAX_CONSECUTIVE_SKIPS, PHASE_VOTING, SKIP
from .errors import (
    ALREADY_ACTED, FORBIDDEN, INVALID_PHASE, INVALID_TARGET, NOT_FOUND, ActionResult
)
from .models import RoomState, VoteResult

logger = logging.getLogger(__name__)


def validate_ballot(room: RoomState, voter_id: str, target_id: Optional[str]) -> ActionResult:
    """
    Cast-time checks for one ballot. ``target_id`` of None is a skip.
    """
    voter = room.players.get(voter_id)
    if voter is None:
        return ActionResult.error(NOT_FOUND, "Player not found")
    if room.phase != PHASE_VOTING:
        return ActionResult.error(INVALID_PHASE, "Not the voting phase")
    if voter_id in room.eliminated_players:
        return ActionResult.error(FORBIDDEN, "Eliminated players cannot vote")
    if voter.has_voted:
        return ActionResult.error(ALREADY_ACTED, "You have already voted")
    if voter_id in room.blocked_votes:
        return ActionResult.error(FORBIDDEN, "You are bound and cannot vote this round")

    if target_id is None:
        if room.consecutive_skips >= MAX_CONSECUTIVE_SKIPS:
            return ActionResult.error(
                INVALID_TARGET,
                f"Voting cannot be skipped {MAX_CONSECUTIVE_SKIPS + 1} rounds in a row"
            )
        return ActionResult.ok()

    if target_id not in room.players:
        return ActionResult.error(INVALID_TARGET, "Vote target not found")
    if target_id == voter_id:
        return ActionResult.error(INVALID_TARGET, "You cannot vote for yourself")
    if target_id in room.eliminated_players:
        return ActionResult.error(INVALID_TARGET, "Target has already been eliminated")
    return ActionResult.ok()


def effective_ballots(room: RoomState) -> Dict[str, str]:
    """Cast ballots after vote reflection: a reflected voter's vote lands on themselves."""
    ballots = {}
    for voter_id, target in room.votes.items():
        if target != SKIP and voter_id in room.reflected_votes:
            ballots[voter_id] = voter_id
        else:
            ballots[voter_id] = target
    return ballots


def count_votes(room: RoomState, ballots: Dict[str, str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for target in ballots.values():
        if target == SKIP:
            continue
        weight = 2 if target in room.double_vote_damage else 1
        counts[target] = counts.get(target, 0) + weight
    return counts


def top_candidates(counts: Dict[str, int]) -> List[str]:
    if not counts:
        return []
    best = max(counts.values())
    return [target for target, count in counts.items() if count == best]


def tally_votes(room: RoomState) -> VoteResult:
    """
    Resolve the round's ballots into at most one elimination.

    Precedence: skip majority, then tie, then protection, then elimination.
    Updates ``consecutive_skips`` and stores the result on the room.
    """
    ballots = effective_ballots(room)
    counts = count_votes(room, ballots)
    skip_votes = sum(1 for target in ballots.values() if target == SKIP)
    total_votes = len(ballots)
    candidates = top_candidates(counts)

    eliminated_id = None
    if skip_votes > total_votes / 2:
        logger.info(f"[{room.code}] Skip majority ({skip_votes}/{total_votes}), nobody eliminated")
    elif len(candidates) > 1:
        logger.info(f"[{room.code}] Tie between {candidates}, nobody eliminated")
    elif not candidates:
        logger.info(f"[{room.code}] No ballots named a target")
    elif candidates[0] in room.protected_players:
        logger.info(f"[{room.code}] {candidates[0]} is protected, elimination cancelled")
    else:
        eliminated_id = candidates[0]

    if eliminated_id is None:
        room.consecutive_skips += 1
    else:
        room.consecutive_skips = 0

    result = VoteResult(
        eliminated_id=eliminated_id,
        vote_counts=list(counts.items()),
        tie=len(candidates) > 1,
        skip_votes=skip_votes,
        total_votes=total_votes,
    )
    room.last_vote_result = result
    logger.info(
        f"[{room.code}] Tally: eliminated={eliminated_id}, counts={result.vote_counts}, "
        f"consecutive_skips={room.consecutive_skips}"
    )
    return result
