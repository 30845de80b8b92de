import pytest
import pytest_asyncio

from conftest import wait_until
from quiz_client.game_controller import GameController, GameState
from quiz_client.models import LobbyPlayer, SnapshotSource
from quiz_client.views.lobby_view import dedupe_players, merge_player


@pytest_asyncio.fixture()
async def game(fake_network, store):
    controller = GameController(
        fake_network,
        store,
        error_redirect_delay=0.01,
        lobby_options={"countdown_seconds": 0, "join_options": {"backoff_seconds": 0}},
    )
    yield controller
    view = controller.current_view
    if view is not None and view.active:
        view.on_leave()


def lobby(game):
    return game.view(GameState.LOBBY)


@pytest.mark.asyncio
async def test_entering_the_lobby_joins_the_room(game, fake_network):
    game.join("abc1", "Alice")

    await wait_until(lambda: fake_network.calls("JoinGame"))

    assert game.state == GameState.LOBBY
    assert fake_network.calls("JoinGame") == [("abc1", "ALICE", None)]
    assert lobby(game).state.initializing


@pytest.mark.asyncio
async def test_joined_game_sets_roster_and_persists_identity(game, fake_network, store):
    game.join("ABC1", "Alice")
    await fake_network.push("JoinedGame", {
        "playerId": "p1",
        "userName": "ALICE",
        "gameTitle": "Capitals",
        "players": [{"playerId": "p1", "userName": "ALICE"}, {"playerId": "p2", "userName": "Bob"}],
    })

    state = lobby(game).state
    assert [p.name for p in state.players] == ["ALICE", "Bob"]
    assert state.current_player.id == "p1"
    assert state.game_title == "Capitals"
    assert not state.initializing
    assert game.player_id == "p1"
    assert await store.find_player_id("abc1", "alice") == "p1"


@pytest.mark.asyncio
async def test_single_player_events_merge_and_disconnect_removes(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("LobbyInfo", {"players": [{"playerId": "p1", "userName": "Alice"}]})
    await fake_network.push("PlayerJoined", {"playerId": "p2", "userName": "Bob"})
    await fake_network.push("PlayerJoined", {"playerId": "p2", "userName": "Bob"})

    assert [p.id for p in lobby(game).state.players] == ["p1", "p2"]

    await fake_network.push("PlayerDisconnected", {"playerId": "p2"})

    assert [p.id for p in lobby(game).state.players] == ["p1"]


@pytest.mark.asyncio
async def test_full_roster_is_deduplicated(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("LobbyUpdate", {"players": [
        {"playerId": "p1", "userName": "Alice"},
        {"playerId": "p1", "userName": "Alice"},
        {"playerId": "p9", "userName": "ALICE"},
        {"playerId": "p2", "userName": "Bob"},
    ]})

    assert [p.name for p in lobby(game).state.players] == ["ALICE", "Bob"]


@pytest.mark.asyncio
async def test_ready_room_counts_down_into_the_first_question(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("LobbyInfo", {"players": [{"playerId": "p1", "userName": "Alice"}], "totalQuestions": 3})

    await wait_until(lambda: game.state == GameState.QUESTION)

    assert game.view(GameState.QUESTION).active
    assert fake_network.subscribed("LobbyInfo") == 0


@pytest.mark.asyncio
async def test_closed_room_is_not_ready(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("RoomStatus", {
        "players": [{"playerId": "p1", "userName": "Alice"}], "totalQuestions": 3, "status": "Ended",
    })

    assert not lobby(game).ready
    assert game.state == GameState.LOBBY


@pytest.mark.asyncio
async def test_room_without_questions_is_not_ready(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("LobbyInfo", {"players": [{"playerId": "p1", "userName": "Alice"}]})

    assert not lobby(game).ready
    assert lobby(game).state.countdown is None


@pytest.mark.asyncio
async def test_game_started_navigates_immediately(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("GameStarted", {"gameId": "g1"})

    assert game.state == GameState.QUESTION


@pytest.mark.asyncio
async def test_early_new_question_is_handed_over(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("NewQuestion", {
        "questionIndex": 1, "questionText": "First?", "answers": [{"id": "a", "text": "Yes"}],
    })

    assert game.state == GameState.QUESTION
    assert game.view(GameState.QUESTION).state.text == "First?"


@pytest.mark.asyncio
async def test_final_results_in_lobby_go_to_final_view(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("GameEnded", {"players": [{"id": "p1", "score": 10}]})

    assert game.state == GameState.FINAL
    assert game.view(GameState.FINAL).snapshot.source == SnapshotSource.GAME_ENDED


@pytest.mark.asyncio
async def test_lobby_error_stays_until_player_leaves(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("Error", {"message": "Room is full"})

    assert game.state == GameState.LOBBY
    assert lobby(game).state.error == "Room is full"
    assert not lobby(game).state.initializing

    await lobby(game).leave()

    assert game.state == GameState.HOME
    assert fake_network.disconnected


@pytest.mark.asyncio
async def test_session_not_found_in_lobby_redirects_home(game, fake_network):
    game.join("ABC1", "Alice")
    await fake_network.push("error", "Session not found")

    assert game.state == GameState.ERROR
    assert "session not found" in game.error

    await wait_until(lambda: game.state == GameState.HOME)


@pytest.mark.asyncio
async def test_join_failure_is_shown_in_lobby(game, fake_network):
    fake_network.set_connected(False)
    game.join("ABC1", "Alice")

    await wait_until(lambda: lobby(game).state.error is not None)

    assert "ABC1" in lobby(game).state.error
    assert game.state == GameState.LOBBY


def test_merge_player_matches_by_id_then_name():
    players = [LobbyPlayer(id="p1", name="Alice")]

    by_id = merge_player(players, LobbyPlayer(id="p1", name="Alicia"))
    by_name = merge_player(players, LobbyPlayer(id="p5", name=" alice "))
    new = merge_player(players, LobbyPlayer(id="p2", name="Bob"))

    assert [p.name for p in by_id] == ["Alicia"]
    assert [p.id for p in by_name] == ["p5"]
    assert len(new) == 2


def test_dedupe_keeps_first_position():
    players = dedupe_players((
        LobbyPlayer(id="p2", name="Bob"),
        LobbyPlayer(id="p1", name="Alice"),
        LobbyPlayer(id="p2", name="Bob"),
    ))

    assert [p.id for p in players] == ["p2", "p1"]
