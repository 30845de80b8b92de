import asyncio

import pytest

from quiz_client.errors import (
    HubConnectionError,
    HubInvocationError,
    JoinFailedError,
    NotConnectedError,
    SessionNotFoundError,
)
from quiz_client.join_controller import JoinController
from quiz_client.models import JoinedGame


def make_join(network, store, **overrides):
    options = dict(backoff_seconds=0, initializing_timeout=5)
    options.update(overrides)
    return JoinController(network, store, "ABC1", "Alice", **options)


@pytest.mark.asyncio
async def test_joins_once_when_connection_comes_up_on_fifth_attempt(fake_network, store):
    fake_network.set_connected(False)
    fake_network.connect_on_attempt = 5
    join = make_join(fake_network, store)

    await join.start()

    assert fake_network.ensure_calls == 5
    assert fake_network.calls("JoinGame") == [("ABC1", "ALICE", None)]
    assert join.joined
    assert join.error is None


@pytest.mark.asyncio
async def test_start_is_a_latch(fake_network, store):
    join = make_join(fake_network, store)

    first = join.start()
    second = join.start()
    await first
    join.start()
    await asyncio.sleep(0)

    assert first is second
    assert len(fake_network.calls("JoinGame")) == 1


@pytest.mark.asyncio
async def test_gives_up_after_five_attempts(fake_network, store):
    fake_network.set_connected(False)
    failures = []
    join = make_join(fake_network, store, on_failed=failures.append)

    await join.start()

    assert fake_network.ensure_calls == 5
    assert fake_network.calls("JoinGame") == []
    assert isinstance(join.error, JoinFailedError)
    assert failures == [join.error]
    assert not join.initializing


@pytest.mark.asyncio
async def test_timed_out_join_is_not_sent_again(fake_network, store):
    outcomes = [HubInvocationError("JoinGame", "no response within 15.0s"), {"playerId": "p2"}]

    def respond(*args):
        outcome = outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    fake_network.responses["JoinGame"] = respond
    failures = []
    join = make_join(fake_network, store, on_failed=failures.append)

    await join.start()

    assert len(fake_network.calls("JoinGame")) == 1
    assert isinstance(join.error, JoinFailedError)
    assert failures == [join.error]
    assert join.player_id is None


@pytest.mark.asyncio
async def test_drop_before_join_is_sent_is_retried(fake_network, store):
    original_invoke = fake_network.invoke
    drops = [NotConnectedError("dropped")]

    async def invoke(method, *args):
        if drops:
            raise drops.pop()
        return await original_invoke(method, *args)

    fake_network.invoke = invoke
    fake_network.responses["JoinGame"] = {"playerId": "p1"}
    join = make_join(fake_network, store)

    await join.start()

    assert fake_network.ensure_calls == 2
    assert len(fake_network.calls("JoinGame")) == 1
    assert join.player_id == "p1"


@pytest.mark.asyncio
async def test_connection_lost_after_join_is_sent_is_terminal(fake_network, store):
    fake_network.responses["JoinGame"] = HubConnectionError("Connection lost")
    join = make_join(fake_network, store)

    await join.start()

    assert len(fake_network.calls("JoinGame")) == 1
    assert isinstance(join.error, JoinFailedError)


@pytest.mark.asyncio
async def test_unexpected_error_becomes_join_failure(fake_network, store):
    async def broken_connect():
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    fake_network.ensure_connected = broken_connect
    failures = []
    join = make_join(fake_network, store, on_failed=failures.append)

    await join.start()

    assert isinstance(join.error, JoinFailedError)
    assert isinstance(join.error.cause, ValueError)
    assert failures == [join.error]
    assert not join.initializing


@pytest.mark.asyncio
async def test_connection_errors_are_retried(fake_network, store):
    attempts = []

    async def flaky_connect():
        attempts.append(1)
        if len(attempts) < 3:
            raise HubConnectionError("refused")

    fake_network.ensure_connected = flaky_connect
    join = make_join(fake_network, store)

    await join.start()

    assert len(attempts) == 3
    assert join.joined


@pytest.mark.asyncio
async def test_session_not_found_is_not_retried(fake_network, store):
    fake_network.responses["JoinGame"] = HubInvocationError("JoinGame", "Session not found")
    failures = []
    join = make_join(fake_network, store, on_failed=failures.append)

    await join.start()

    assert len(fake_network.calls("JoinGame")) == 1
    assert isinstance(failures[0], SessionNotFoundError)


@pytest.mark.asyncio
async def test_stored_identity_is_reused_for_matching_name(fake_network, store):
    await store.save_session("ABC1", "ALICE", "p1")
    join = make_join(fake_network, store)

    await join.start()

    assert fake_network.calls("JoinGame") == [("ABC1", "ALICE", "p1")]


@pytest.mark.asyncio
async def test_stored_identity_is_ignored_for_another_name(fake_network, store):
    await store.save_session("ABC1", "Bob", "p2")
    join = make_join(fake_network, store)

    await join.start()

    assert fake_network.calls("JoinGame") == [("ABC1", "ALICE", None)]


@pytest.mark.asyncio
async def test_invoke_result_player_id_is_persisted(fake_network, store):
    fake_network.responses["JoinGame"] = {"playerId": "p42"}
    join = make_join(fake_network, store)

    await join.start()

    assert join.player_id == "p42"
    assert await store.find_player_id("abc1", "alice") == "p42"
    assert await store.load_last_name() == "Alice"


@pytest.mark.asyncio
async def test_joined_game_event_confirms_membership(fake_network, store):
    join = make_join(fake_network, store)
    await join.start()

    await join.handle_joined_game(JoinedGame(player_id="p7", user_name="ALICE"))

    assert join.player_id == "p7"
    assert not join.initializing
    assert (await store.load_session("ABC1")).player_id == "p7"


@pytest.mark.asyncio
async def test_initializing_is_forced_off_by_safety_timeout(fake_network, store):
    fake_network.set_connected(False)
    join = make_join(fake_network, store, initializing_timeout=0.01, backoff_seconds=1)

    join.start()
    assert join.initializing
    await asyncio.sleep(0.05)

    assert not join.initializing
    join.cancel()
