import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import T0
from core.errors import (
    AlreadyLocked,
    ChallengeBlocked,
    ChallengeExists,
    Expired,
    InvalidChallenge,
    InvalidTransition,
    MatchNotFound,
    NotParticipant,
)
from models.block import UserBlock
from models.event import EventType, MatchEvent
from models.lock import LockStatus, MatchLock
from models.match import MatchStatus
from services import admission, challenges
from services.lifecycle import set_status


async def _locks(db):
    result = await db.execute(select(MatchLock).order_by(MatchLock.user_id))
    return result.scalars().all()


async def _event_types(db, match_id):
    result = await db.execute(
        select(MatchEvent.event_type).where(MatchEvent.match_id == match_id).order_by(MatchEvent.id)
    )
    return list(result.scalars().all())


class TestCreateChallenge:
    async def test_creates_pending_challenge_without_locks(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 3, now=T0)

        assert match.status == MatchStatus.PENDING
        assert match.challenge_expires_at == T0 + timedelta(hours=24)
        assert match.match_format == 3
        assert match.legs_to_win == 2
        assert (match.u_lo, match.u_hi) == (alice, bob)
        assert await _locks(db) == []
        assert await _event_types(db, match.id) == [EventType.CREATED]

    @pytest.mark.parametrize("match_format, game_type", [(0, "501"), (-1, "501"), (3, "cricket")])
    async def test_rejects_invalid_options(self, db, alice, bob, match_format, game_type):
        with pytest.raises(InvalidChallenge):
            await challenges.create_challenge(db, alice, bob, match_format, game_type, now=T0)

    async def test_rejects_self_challenge(self, db, alice):
        with pytest.raises(InvalidChallenge):
            await challenges.create_challenge(db, alice, alice, 1, now=T0)

    @pytest.mark.parametrize("blocker_is_receiver", [True, False])
    async def test_blocked_in_either_direction(self, db, alice, bob, blocker_is_receiver):
        blocker, blocked = (bob, alice) if blocker_is_receiver else (alice, bob)
        db.add(UserBlock(user_id=blocker, blocked_id=blocked))
        await db.commit()

        with pytest.raises(ChallengeBlocked):
            await challenges.create_challenge(db, alice, bob, 1, now=T0)

    async def test_one_pending_challenge_per_pair(self, db, alice, bob):
        first = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        first_id = first.id

        with pytest.raises(ChallengeExists) as exc:
            await challenges.create_challenge(db, bob, alice, 3, now=T0)

        assert exc.value.details["matchId"] == str(first_id)

    async def test_rematch_allowed_after_decline(self, db, alice, bob):
        first = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.decline_challenge(db, first.id, bob, now=T0)

        second = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        assert second.id != first.id
        assert second.status == MatchStatus.PENDING

    async def test_rejects_locked_user(self, db, alice, bob, carol):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)
        match_id = match.id

        with pytest.raises(AlreadyLocked) as exc:
            await challenges.create_challenge(db, carol, bob, 1, now=T0)

        assert exc.value.details["matchId"] == str(match_id)

    async def test_clears_lock_left_by_finished_match(self, db, alice, bob, carol):
        old = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.decline_challenge(db, old.id, bob, now=T0)
        db.add(MatchLock(user_id=alice, match_id=old.id, lock_status=LockStatus.READY, updated_at=T0))
        await db.commit()

        match = await challenges.create_challenge(db, alice, carol, 1, now=T0)

        assert match.status == MatchStatus.PENDING
        assert await admission.find_lock(db, alice) is None


class TestAcceptChallenge:
    async def test_accept_locks_both_players(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 3, now=T0)
        accepted_at = T0 + timedelta(minutes=10)

        match = await challenges.accept_challenge(db, match.id, bob, now=accepted_at)

        assert match.status == MatchStatus.READY
        assert match.join_window_expires_at == accepted_at + timedelta(minutes=5)
        locks = await _locks(db)
        assert [lock.user_id for lock in locks] == [alice, bob]
        assert {lock.lock_status for lock in locks} == {LockStatus.READY}
        assert {lock.match_id for lock in locks} == {match.id}

    async def test_only_receiver_can_accept(self, db, alice, bob, carol):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        match_id = match.id

        for user in (alice, carol):
            with pytest.raises(NotParticipant):
                await challenges.accept_challenge(db, match_id, user, now=T0)

    async def test_accept_after_expiry(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        match_id = match.id

        with pytest.raises(Expired):
            await challenges.accept_challenge(db, match_id, bob, now=T0 + timedelta(hours=24))

        match = await challenges.get_match(db, match_id, alice)
        assert match.status == MatchStatus.PENDING
        assert await _locks(db) == []

    async def test_unknown_match(self, db, bob):
        with pytest.raises(MatchNotFound):
            await challenges.accept_challenge(db, uuid.uuid4(), bob, now=T0)

    async def test_second_acceptance_for_shared_receiver_is_rejected(self, db, alice, bob, carol):
        from_carol = await challenges.create_challenge(db, carol, bob, 1, now=T0)
        from_alice = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        carol_match_id = from_carol.id

        await challenges.accept_challenge(db, from_alice.id, bob, now=T0)
        with pytest.raises(AlreadyLocked):
            await challenges.accept_challenge(db, carol_match_id, bob, now=T0)

        loser = await challenges.get_match(db, carol_match_id, carol)
        assert loser.status == MatchStatus.PENDING
        assert await admission.find_lock(db, carol) is None
        assert len(await _locks(db)) == 2

    async def test_accept_clears_lock_left_by_finished_match(self, db, alice, bob, carol):
        old = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.decline_challenge(db, old.id, bob, now=T0)
        match = await challenges.create_challenge(db, carol, bob, 1, now=T0)
        match_id = match.id
        db.add(MatchLock(user_id=bob, match_id=old.id, lock_status=LockStatus.READY, updated_at=T0))
        await db.commit()

        match = await challenges.accept_challenge(db, match_id, bob, now=T0)

        assert match.status == MatchStatus.READY
        locks = await _locks(db)
        assert [(lock.user_id, lock.match_id) for lock in locks] == [(bob, match_id), (carol, match_id)]

    async def test_concurrent_acceptances_lock_receiver_once(self, session_factory, alice, bob, carol):
        async with session_factory() as setup:
            from_carol = await challenges.create_challenge(setup, carol, bob, 1, now=T0)
            from_alice = await challenges.create_challenge(setup, alice, bob, 1, now=T0)
            carol_match_id, alice_match_id = from_carol.id, from_alice.id

        async with session_factory() as first, session_factory() as second:
            # Both sessions read their challenge as pending before either accepts
            assert (await challenges.get_match(first, alice_match_id, bob)).status == MatchStatus.PENDING
            assert (await challenges.get_match(second, carol_match_id, bob)).status == MatchStatus.PENDING
            await first.commit()
            await second.commit()

            await challenges.accept_challenge(first, alice_match_id, bob, now=T0)
            with pytest.raises(AlreadyLocked) as exc:
                await challenges.accept_challenge(second, carol_match_id, bob, now=T0)

            assert exc.value.details["matchId"] == str(alice_match_id)

        async with session_factory() as check:
            assert (await challenges.get_match(check, carol_match_id, carol)).status == MatchStatus.PENDING
            assert await admission.find_lock(check, carol) is None
            assert [lock.match_id for lock in await _locks(check)] == [alice_match_id, alice_match_id]


class TestDeclineChallenge:
    async def test_decline(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        match = await challenges.decline_challenge(db, match.id, bob, now=T0)

        assert match.status == MatchStatus.CANCELLED
        assert match.ended_reason == "declined"
        assert match.ended_by == bob
        assert match.ended_at == T0
        assert await _event_types(db, match.id) == [EventType.CREATED, EventType.DECLINED]

    async def test_decline_twice(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.decline_challenge(db, match.id, bob, now=T0)

        with pytest.raises(InvalidTransition):
            await challenges.decline_challenge(db, match.id, bob, now=T0)

    async def test_challenger_cannot_decline(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        with pytest.raises(NotParticipant):
            await challenges.decline_challenge(db, match.id, alice, now=T0)


class TestConfirmJoin:
    async def test_both_confirmations_start_match(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 3, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)

        match = await challenges.confirm_join(db, match.id, bob, now=T0 + timedelta(seconds=10))
        assert match.status == MatchStatus.LOBBY
        assert match.receiver_joined_at == T0 + timedelta(seconds=10)
        assert match.current_player_id is None

        started_at = T0 + timedelta(seconds=20)
        match = await challenges.confirm_join(db, match.id, alice, now=started_at)

        assert match.status == MatchStatus.IN_PROGRESS
        assert match.current_player_id == alice
        assert match.leg_starter_id == alice
        assert match.turn_index_in_leg == 0
        assert match.leg_number == 1
        assert match.scores == {str(alice): 501, str(bob): 501}
        assert match.legs_won == {str(alice): 0, str(bob): 0}
        assert match.join_window_expires_at == started_at + timedelta(seconds=900)
        assert {lock.lock_status for lock in await _locks(db)} == {LockStatus.IN_PROGRESS}
        assert await _event_types(db, match.id) == [
            EventType.CREATED,
            EventType.ACCEPTED,
            EventType.JOINED,
            EventType.STARTED,
        ]

    async def test_repeated_confirmation_is_noop(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)
        await challenges.confirm_join(db, match.id, alice, now=T0)

        match = await challenges.confirm_join(db, match.id, alice, now=T0 + timedelta(seconds=30))

        assert match.status == MatchStatus.LOBBY
        assert match.challenger_joined_at == T0
        assert len(await _event_types(db, match.id)) == 3

    async def test_join_after_window(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)

        with pytest.raises(Expired):
            await challenges.confirm_join(db, match.id, alice, now=T0 + timedelta(minutes=5))

    async def test_join_pending_challenge(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        with pytest.raises(InvalidTransition):
            await challenges.confirm_join(db, match.id, alice, now=T0)

    async def test_outsider_cannot_join(self, db, alice, bob, carol):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)

        with pytest.raises(NotParticipant):
            await challenges.confirm_join(db, match.id, carol, now=T0)


class TestCancelMatch:
    async def test_cancel_pending_uses_cancelled_reason(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        match = await challenges.cancel_match(db, match.id, alice, now=T0)

        assert match.status == MatchStatus.CANCELLED
        assert match.ended_reason == "cancelled"
        assert match.ended_by == alice

    async def test_cancel_in_progress_releases_locks(self, db, bob, start_match):
        match = await start_match()

        match = await challenges.cancel_match(db, match.id, bob, now=T0 + timedelta(minutes=1))

        assert match.status == MatchStatus.CANCELLED
        assert match.ended_reason == "aborted"
        assert match.current_player_id is None
        assert await _locks(db) == []

    async def test_cancel_with_reason(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)

        match = await challenges.cancel_match(db, match.id, bob, reason="connection_lost", now=T0)

        assert match.ended_reason == "connection_lost"
        assert await _locks(db) == []

    async def test_cancel_terminal_match(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.cancel_match(db, match.id, alice, now=T0)

        with pytest.raises(InvalidTransition):
            await challenges.cancel_match(db, match.id, bob, now=T0)

    async def test_outsider_cannot_cancel(self, db, alice, bob, carol):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        with pytest.raises(NotParticipant):
            await challenges.cancel_match(db, match.id, carol, now=T0)


class TestExpireMatch:
    async def test_expire_before_deadline(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        with pytest.raises(InvalidTransition):
            await challenges.expire_match(db, match.id, alice, now=T0 + timedelta(hours=1))

    async def test_expire_overdue_challenge(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        match = await challenges.expire_match(db, match.id, alice, now=T0 + timedelta(hours=25))

        assert match.status == MatchStatus.EXPIRED
        assert match.ended_reason == "expired"
        assert match.ended_by is None

    async def test_expire_lobby_past_join_window(self, db, alice, bob):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        await challenges.accept_challenge(db, match.id, bob, now=T0)
        await challenges.confirm_join(db, match.id, alice, now=T0)

        match = await challenges.expire_match(db, match.id, alice, now=T0 + timedelta(minutes=6))

        assert match.status == MatchStatus.EXPIRED
        assert await _locks(db) == []


class TestNoBackwardTransitions:
    async def test_earlier_actions_rejected_once_started(self, db, alice, bob, start_match):
        match = await start_match()
        match_id = match.id

        with pytest.raises(InvalidTransition):
            await challenges.accept_challenge(db, match_id, bob, now=T0)
        with pytest.raises(InvalidTransition):
            await challenges.decline_challenge(db, match_id, bob, now=T0)
        with pytest.raises(InvalidTransition):
            await challenges.confirm_join(db, match_id, alice, now=T0)

    async def test_set_status_refuses_to_move_back(self, db, start_match):
        match = await start_match()

        with pytest.raises(InvalidTransition):
            set_status(match, MatchStatus.LOBBY, T0)
        assert match.status == MatchStatus.IN_PROGRESS


class TestQueries:
    async def test_get_match_for_outsider(self, db, alice, bob, carol):
        match = await challenges.create_challenge(db, alice, bob, 1, now=T0)

        with pytest.raises(NotParticipant):
            await challenges.get_match(db, match.id, carol)

    async def test_list_matches_newest_first(self, db, alice, bob, carol):
        older = await challenges.create_challenge(db, alice, bob, 1, now=T0)
        newer = await challenges.create_challenge(db, carol, alice, 1, now=T0 + timedelta(minutes=1))
        await challenges.decline_challenge(db, older.id, bob, now=T0 + timedelta(minutes=2))

        listed = await challenges.list_matches(db, alice)
        assert [m.id for m in listed] == [newer.id, older.id]

        pending = await challenges.list_matches(db, alice, [MatchStatus.PENDING])
        assert [m.id for m in pending] == [newer.id]

        assert [m.id for m in await challenges.list_matches(db, bob)] == [older.id]
