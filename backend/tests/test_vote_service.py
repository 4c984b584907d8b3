"""
投票、撤回和排名测试
"""
import pytest

from conftest import HOST_ID, OTHER_HOST_ID
from connected_mate.core.config import settings
from connected_mate.core.exceptions import (
    DuplicateVoteError,
    InvalidVoteTargetError,
    NotSessionHostError,
    QuotaExceededError,
    ReasonRequiredError,
    SessionNotActiveError,
    SessionNotVotingError,
    ValidationError,
    VoteNotFoundError,
)
from connected_mate.models.session import AnonymityLevel
from connected_mate.models.vote import Vote, VoteTargetType
from connected_mate.schemas.session_schemas import SessionUpdate
from connected_mate.schemas.vote_schemas import ContributionCreate, VoteCast, VoteTarget
from connected_mate.services.contribution_service import ContributionService
from connected_mate.services.participant_service import ParticipantService
from connected_mate.services.session_service import SessionService
from connected_mate.services.vote_service import VoteService
from connected_mate.services.websocket_service import SessionEvent


@pytest.fixture
def member(db, join):
    """加入会话并返回参与者记录"""
    async def _member(session_id: int, **attributes):
        joined = await join(session_id, **attributes)
        return await ParticipantService(db).lookup(joined.participant_id, joined.token)
    return _member


def vote_for(participant) -> VoteCast:
    return VoteCast(target_type=VoteTargetType.PARTICIPANT, target_id=participant.id)


class TestCast:
    """投票规则"""

    async def test_cast_counts_in_ranking(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        target = await member(session.id)
        vote = await VoteService(db).cast(session.id, voter, vote_for(target))
        assert vote.voter_id == voter.id
        ranking = await VoteService(db).rank(session.id)
        assert [(r.target_id, r.vote_count) for r in ranking] == [(target.id, 1)]

    async def test_draft_session_not_voting(self, db, create_session, member):
        session = await create_session()
        voter = await member(session.id)
        with pytest.raises(SessionNotVotingError):
            await VoteService(db).cast(session.id, voter, vote_for(voter))

    async def test_ended_session_not_voting(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        await SessionService(db).end(session.id, HOST_ID)
        with pytest.raises(SessionNotVotingError):
            await VoteService(db).cast(session.id, voter, vote_for(voter))
        assert db.query(Vote).count() == 0

    async def test_duplicate_vote_counts_once(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        target = await member(session.id)
        service = VoteService(db)
        await service.cast(session.id, voter, vote_for(target))
        with pytest.raises(DuplicateVoteError):
            await service.cast(session.id, voter, vote_for(target))
        ranking = await service.rank(session.id)
        assert ranking[0].vote_count == 1

    async def test_reason_required(self, db, create_session, member):
        session = await create_session(start=True, require_vote_reason=True)
        voter = await member(session.id)
        service = VoteService(db)
        with pytest.raises(ReasonRequiredError):
            await service.cast(session.id, voter, VoteCast(target_type="participant", target_id=voter.id, reason="  "))
        vote = await service.cast(
            session.id, voter, VoteCast(target_type="participant", target_id=voter.id, reason="Très clair")
        )
        assert vote.reason == "Très clair"

    async def test_target_from_other_session_rejected(self, db, create_session, member):
        session = await create_session(start=True)
        other = await create_session(start=True)
        voter = await member(session.id)
        outsider = await member(other.id)
        with pytest.raises(InvalidVoteTargetError):
            await VoteService(db).cast(session.id, voter, vote_for(outsider))

    async def test_unknown_contribution_rejected(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        with pytest.raises(InvalidVoteTargetError):
            await VoteService(db).cast(session.id, voter, VoteCast(target_id=999))

    async def test_cast_publishes_event(self, db, create_session, member, broadcaster):
        session = await create_session(start=True)
        voter = await member(session.id)
        await VoteService(db, broadcaster).cast(session.id, voter, vote_for(voter))
        assert broadcaster.types() == [SessionEvent.VOTE_CAST]


class TestQuota:
    """投票配额"""

    async def test_quota_then_retract_frees_slot(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        targets = [await member(session.id) for _ in range(4)]
        service = VoteService(db)

        for target in targets[:3]:
            await service.cast(session.id, voter, vote_for(target))
        with pytest.raises(QuotaExceededError) as exc_info:
            await service.cast(session.id, voter, vote_for(targets[3]))
        assert exc_info.value.details == {"max_votes_per_participant": 3}

        await service.retract(session.id, voter, VoteTarget(target_type="participant", target_id=targets[0].id))
        await service.cast(session.id, voter, vote_for(targets[3]))
        mine = await service.votes_by_voter(session.id, voter)
        assert sorted(v.target_id for v in mine.votes) == sorted(t.id for t in targets[1:])
        assert mine.remaining == 0

    async def test_remaining_quota(self, db, create_session, member):
        session = await create_session(start=True, max_votes_per_participant=2)
        voter = await member(session.id)
        service = VoteService(db)
        await service.cast(session.id, voter, vote_for(voter))
        mine = await service.votes_by_voter(session.id, voter)
        assert (mine.max_votes, mine.remaining) == (2, 1)

    async def test_lowering_quota_mid_session_blocks_new_votes(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        other = await member(session.id)
        service = VoteService(db)
        await service.cast(session.id, voter, vote_for(voter))
        await service.cast(session.id, voter, vote_for(other))

        await SessionService(db).edit(session.id, HOST_ID, SessionUpdate(max_votes_per_participant=1))
        third = await member(session.id)
        with pytest.raises(QuotaExceededError):
            await service.cast(session.id, voter, vote_for(third))


class TestRetract:
    """撤回投票"""

    async def test_retract_unknown_vote(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        with pytest.raises(VoteNotFoundError):
            await VoteService(db).retract(session.id, voter, VoteTarget(target_type="participant", target_id=voter.id))

    async def test_retract_after_end_rejected(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        service = VoteService(db)
        await service.cast(session.id, voter, vote_for(voter))
        await SessionService(db).end(session.id, HOST_ID)
        with pytest.raises(SessionNotVotingError):
            await service.retract(session.id, voter, VoteTarget(target_type="participant", target_id=voter.id))
        assert db.query(Vote).count() == 1

    async def test_retract_publishes_event(self, db, create_session, member, broadcaster):
        session = await create_session(start=True)
        voter = await member(session.id)
        service = VoteService(db, broadcaster)
        await service.cast(session.id, voter, vote_for(voter))
        await service.retract(session.id, voter, VoteTarget(target_type="participant", target_id=voter.id))
        assert broadcaster.types() == [SessionEvent.VOTE_CAST, SessionEvent.VOTE_RETRACTED]


class TestRanking:
    """排名"""

    async def test_ties_broken_by_earliest_join(self, db, create_session, member):
        session = await create_session(start=True, top_voted_count=1)
        first = await member(session.id)
        second = await member(session.id)
        third = await member(session.id)
        service = VoteService(db)
        # second 和 first 各得一票，third 得两票
        await service.cast(session.id, first, vote_for(second))
        await service.cast(session.id, second, vote_for(first))
        await service.cast(session.id, first, vote_for(third))
        await service.cast(session.id, second, vote_for(third))

        ranking = await service.rank(session.id)
        assert [r.target_id for r in ranking] == [third.id, first.id, second.id]
        assert [r.rank for r in ranking] == [1, 2, 3]
        assert [r.is_top_voted for r in ranking] == [True, False, False]

    async def test_ranking_is_stable(self, db, create_session, member):
        session = await create_session(start=True)
        people = [await member(session.id) for _ in range(4)]
        service = VoteService(db)
        for voter, target in zip(people, reversed(people)):
            await service.cast(session.id, voter, vote_for(target))
        assert await service.rank(session.id) == await service.rank(session.id)

    async def test_labels_respect_anonymity(self, db, create_session, member):
        session = await create_session(start=True, anonymity_level=AnonymityLevel.SEMI_ANONYMOUS)
        voter = await member(session.id, nickname="Pixel", real_name="Camille Durand")
        await VoteService(db).cast(session.id, voter, vote_for(voter))
        ranking = await VoteService(db).rank(session.id)
        assert ranking[0].label == "Pixel"

    async def test_ranking_survives_session_end(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        await VoteService(db).cast(session.id, voter, vote_for(voter))
        await SessionService(db).end(session.id, HOST_ID)
        ranking = await VoteService(db).rank(session.id)
        assert ranking[0].vote_count == 1

    async def test_all_votes_host_only(self, db, create_session, member):
        session = await create_session(start=True)
        voter = await member(session.id)
        service = VoteService(db)
        await service.cast(session.id, voter, vote_for(voter))
        assert len(await service.all_votes(session.id, HOST_ID)) == 1
        with pytest.raises(NotSessionHostError):
            await service.all_votes(session.id, OTHER_HOST_ID)


class TestContributions:
    """贡献内容"""

    async def test_submit_and_vote_on_contribution(self, db, create_session, member):
        session = await create_session(start=True)
        author = await member(session.id)
        voter = await member(session.id)
        idea = await ContributionService(db).submit(session.id, author, ContributionCreate(content="  Plus de pauses  "))
        assert idea.content == "Plus de pauses"

        await VoteService(db).cast(session.id, voter, VoteCast(target_id=idea.id))
        listing = await ContributionService(db).list_contributions(session.id)
        assert [(c.id, c.vote_count) for c in listing] == [(idea.id, 1)]

        ranking = await VoteService(db).rank(session.id)
        assert ranking[0].target_type == VoteTargetType.CONTRIBUTION
        assert ranking[0].label == "Plus de pauses"

    async def test_submit_requires_active_session(self, db, create_session, member):
        session = await create_session()
        author = await member(session.id)
        with pytest.raises(SessionNotActiveError):
            await ContributionService(db).submit(session.id, author, ContributionCreate(content="Trop tôt"))

    async def test_blank_content_rejected(self, db, create_session, member):
        session = await create_session(start=True)
        author = await member(session.id)
        with pytest.raises(ValidationError):
            await ContributionService(db).submit(session.id, author, ContributionCreate(content="   "))

    async def test_overlong_content_rejected(self, db, create_session, member):
        session = await create_session(start=True)
        author = await member(session.id)
        with pytest.raises(ValidationError):
            await ContributionService(db).submit(
                session.id, author, ContributionCreate(content="x" * (settings.MAX_CONTRIBUTION_LENGTH + 1))
            )
