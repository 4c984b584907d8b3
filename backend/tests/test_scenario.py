"""
完整会话流程测试
"""
import pytest

from conftest import HOST_ID
from connected_mate.core.exceptions import CapacityExceededError, SessionNotVotingError
from connected_mate.models.session import AnonymityLevel, SessionStatus
from connected_mate.models.vote import VoteTargetType
from connected_mate.schemas.vote_schemas import VoteCast
from connected_mate.services.participant_service import ParticipantService
from connected_mate.services.session_service import SessionService
from connected_mate.services.vote_service import VoteService
from connected_mate.services.websocket_service import SessionEvent


async def test_full_session_flow(db, create_session, join, broadcaster):
    """两人加入、互投、同票按加入顺序排名、结束后不能再投票"""
    session = await create_session(
        anonymity_level=AnonymityLevel.ANONYMOUS,
        max_participants=2,
        top_voted_count=1,
    )
    sessions = SessionService(db, broadcaster)
    participants = ParticipantService(db, broadcaster)
    votes = VoteService(db, broadcaster)

    await sessions.start(session.id, HOST_ID)
    first = await join(session.id)
    second = await join(session.id)
    with pytest.raises(CapacityExceededError):
        await join(session.id)
    assert first.identity.label.startswith("Participant-")
    assert first.identity.label != second.identity.label

    alice = await participants.lookup(first.participant_id, first.token)
    bob = await participants.lookup(second.participant_id, second.token)

    await votes.cast(session.id, alice, VoteCast(target_type=VoteTargetType.PARTICIPANT, target_id=bob.id))
    await votes.cast(session.id, bob, VoteCast(target_type=VoteTargetType.PARTICIPANT, target_id=alice.id))

    ranking = await votes.rank(session.id)
    assert [(r.target_id, r.vote_count) for r in ranking] == [(alice.id, 1), (bob.id, 1)]
    assert ranking[0].is_top_voted and not ranking[1].is_top_voted
    assert ranking[0].label == first.identity.label

    ended = await sessions.end(session.id, HOST_ID)
    assert ended.status == SessionStatus.ENDED
    with pytest.raises(SessionNotVotingError):
        await votes.cast(session.id, alice, VoteCast(target_type=VoteTargetType.PARTICIPANT, target_id=alice.id))

    assert broadcaster.types() == [
        SessionEvent.SESSION_STARTED,
        SessionEvent.VOTE_CAST,
        SessionEvent.VOTE_CAST,
        SessionEvent.SESSION_ENDED,
    ]
    assert await votes.rank(session.id) == ranking
