"""
Tests for the room and match state machine.
"""

from rummy_engine.constants import NUM_ROUNDS
from rummy_engine.rules import get_deal_size
from rummy_engine.scoring import score_hand
from rummy_engine.simulate import FULL_SHOE, room_cards


def go_out(engine, rig, room_id, player_id):
    """Leave the current seat one card and let it discard to end the hand."""
    room = engine.get_room(room_id)
    seat = rig.hand(room, player_id, ['5H'])
    seat.has_drawn = True
    result = engine.discard(room_id, player_id, 0)
    assert result.success
    assert result.data["went_out"]
    return result


# ----------------------------------------------------------------------
# Seating
# ----------------------------------------------------------------------

def test_create_and_join(engine):
    """Seats are handed out in order and the lobby timer is armed."""
    room_id = engine.create_room().data["room_id"]
    first = engine.join_room(room_id, "Alice")
    second = engine.join_room(room_id, "Bob")

    assert first.success and second.success
    assert first.data["seat_index"] == 0
    assert second.data["seat_index"] == 1

    room = engine.get_room(room_id)
    assert [p.name for p in room.players] == ["Alice", "Bob"]
    assert room.lobby_deadline is not None
    assert not room.started


def test_join_unknown_room(engine):
    result = engine.join_room("nope", "Alice")
    assert not result.success
    assert result.error_code == "not_found"


def test_room_holds_six(engine, lobby):
    room_id, _ = lobby
    for name in ("Carol", "Dave", "Erin", "Frank"):
        assert engine.join_room(room_id, name).success

    result = engine.join_room(room_id, "Grace")
    assert not result.success
    assert result.error_code == "full"
    assert len(engine.get_room(room_id).players) == 6


def test_join_at_seat_index(engine, lobby):
    room_id, _ = lobby
    result = engine.join_room(room_id, "Carol", seat_index=0)
    assert result.data["seat_index"] == 0
    assert [p.name for p in engine.get_room(room_id).players] == ["Carol", "Alice", "Bob"]


def test_join_mid_hand_is_refused(engine, started):
    room_id, _ = started
    result = engine.join_room(room_id, "Carol")
    assert result.error_code == "in_progress"


def test_join_between_hands(engine, rig, started):
    """A seat taken between hands is dealt into the next one."""
    room_id, (alice, _) = started
    go_out(engine, rig, room_id, alice)

    carol = engine.join_room(room_id, "Carol")
    assert carol.success

    result = engine.next_hand(room_id, alice)
    assert result.data == {"match_complete": False, "round": 2}
    room = engine.get_room(room_id)
    assert [len(p.hand) for p in room.players] == [8, 8, 8]


def test_spectator_takes_a_seat(engine, lobby):
    room_id, _ = lobby
    watcher = engine.spectate(room_id, "Carol").data["spectator_id"]
    assert len(engine.get_room(room_id).spectators) == 1

    assert engine.join_room(room_id, "Carol", spectator_id=watcher).success
    room = engine.get_room(room_id)
    assert room.spectators == []
    assert len(room.players) == 3


def test_leave_lobby_becomes_spectator(engine, lobby):
    room_id, (_, bob) = lobby
    result = engine.leave_seat(room_id, bob)

    assert result.success
    assert result.data == {"spectator_id": bob, "forfeit": False}
    room = engine.get_room(room_id)
    assert [p.name for p in room.players] == ["Alice"]
    assert [s.name for s in room.spectators] == ["Bob"]


def test_switch_seat_mid_hand(engine, started):
    room_id, (_, bob) = started
    result = engine.switch_seat(room_id, bob, 0)
    assert result.error_code == "in_progress"


def test_switch_seat_in_lobby(engine, lobby):
    room_id, (alice, bob) = lobby
    result = engine.switch_seat(room_id, bob, 0)
    assert result.success
    assert [p.id for p in engine.get_room(room_id).players] == [bob, alice]


def test_start_needs_two_players(engine):
    room_id = engine.create_room().data["room_id"]
    alice = engine.join_room(room_id, "Alice").data["player_id"]

    assert engine.start_match(room_id, alice).error_code == "need_players"
    assert engine.start_match(room_id, "stranger").error_code == "not_player"


def test_start_deals_round_one(engine, started):
    room_id, (alice, _) = started
    room = engine.get_room(room_id)

    assert room.started and not room.hand_complete
    assert room.round_number == 1
    assert [len(p.hand) for p in room.players] == [7, 7]
    assert len(room.discard_pile) == 1
    assert len(room.draw_pile) == 108 - 15
    assert room.current_player().id == alice
    assert room.lobby_deadline is None
    assert room.match_deadline is not None
    assert room_cards(room) == FULL_SHOE


def test_start_twice(engine, started):
    room_id, (alice, _) = started
    assert engine.start_match(room_id, alice).error_code == "started"


# ----------------------------------------------------------------------
# Turns
# ----------------------------------------------------------------------

def test_draw_discard_end_turn(engine, started):
    """The turn phases run in order and the turn passes on."""
    room_id, (alice, bob) = started
    room = engine.get_room(room_id)
    serial = room.turn_serial

    assert engine.discard(room_id, alice, 0).error_code == "need_draw"

    drawn = engine.draw(room_id, alice, "pile")
    assert drawn.success
    assert len(room.players[0].hand) == 8
    assert engine.draw(room_id, alice, "pile").error_code == "already_drawn"
    assert engine.end_turn(room_id, alice).error_code == "need_discard"

    discarded = engine.discard(room_id, alice, 0)
    assert discarded.data["went_out"] is False
    assert engine.discard(room_id, alice, 0).error_code == "already_discarded"

    assert engine.end_turn(room_id, alice).success
    assert room.current_player().id == bob
    assert room.turn_serial > serial
    assert not room.players[1].has_drawn


def test_out_of_turn(engine, started):
    room_id, (_, bob) = started
    assert engine.draw(room_id, bob, "pile").error_code == "turn"
    assert engine.draw(room_id, "stranger", "pile").error_code == "not_player"


def test_draw_before_start(engine, lobby):
    room_id, (alice, _) = lobby
    assert engine.draw(room_id, alice, "pile").error_code == "not_started"


def test_draw_from_discard(engine, started):
    room_id, (alice, _) = started
    room = engine.get_room(room_id)
    top = room.discard_pile[-1]

    result = engine.draw(room_id, alice, "discard")
    assert result.data["card"] == top.id
    assert room.discard_pile == []
    assert room.players[0].hand[-1] == top


def test_unknown_draw_source(engine, started):
    room_id, (alice, _) = started
    assert engine.draw(room_id, alice, "floor").error_code == "invalid"


def test_discard_bad_index(engine, started):
    room_id, (alice, _) = started
    engine.draw(room_id, alice, "pile")
    assert engine.discard(room_id, alice, 8).error_code == "not_found"


def test_give_discard(engine, started):
    """The top discard plus one bonus card go to the target; the giver draws one."""
    room_id, (alice, bob) = started
    room = engine.get_room(room_id)
    top = room.discard_pile[-1]

    assert engine.give_discard(room_id, alice, alice).error_code == "not_found"

    result = engine.give_discard(room_id, alice, bob)
    assert result.success
    assert len(room.players[0].hand) == 8
    assert len(room.players[1].hand) == 9
    assert top in room.players[1].hand
    assert room.players[0].has_drawn
    assert room.discard_pile == []
    assert len(room.draw_pile) == 108 - 15 - 2
    assert room_cards(room) == FULL_SHOE

    assert engine.give_discard(room_id, alice, bob).error_code == "already_drawn"


def test_give_discard_needs_cards(engine, started):
    room_id, (alice, bob) = started
    room = engine.get_room(room_id)
    room.players[1].hand.extend(room.draw_pile)
    room.draw_pile = []

    assert engine.give_discard(room_id, alice, bob).error_code == "empty"


# ----------------------------------------------------------------------
# Melds
# ----------------------------------------------------------------------

def test_lay_groups(engine, rig, started):
    """Round 1 needs two groups; the second one completes the quota."""
    room_id, (alice, _) = started
    room = engine.get_room(room_id)
    seat = rig.hand(room, alice, ['8H', '8S', '8C', '9D', '9C', '9S', '4H'])

    assert engine.lay_group(room_id, alice, [0, 1, 2]).error_code == "need_draw"
    engine.draw(room_id, alice, "pile")

    first = engine.lay_group(room_id, alice, [0, 1, 2])
    assert first.data == {"meld_index": 0, "laid_complete": False}
    second = engine.lay_group(room_id, alice, [0, 1, 2])
    assert second.data == {"meld_index": 1, "laid_complete": True}

    assert [c.id for c in seat.laid_groups[1]] == ['9D', '9C', '9S']
    assert len(seat.hand) == 2
    assert room_cards(room) == FULL_SHOE


def test_lay_rejections(engine, rig, started):
    room_id, (alice, _) = started
    room = engine.get_room(room_id)
    rig.hand(room, alice, ['8H', '9S', '8C', '3D', '4D', '5D', '6D'])
    engine.draw(room_id, alice, "pile")

    assert engine.lay_group(room_id, alice, [0, 2]).error_code == "count"
    assert engine.lay_group(room_id, alice, [0, 0, 2]).error_code == "not_found"
    assert engine.lay_group(room_id, alice, [0, 2, 40]).error_code == "not_found"
    # Round 1 asks for no runs
    assert engine.lay_run(room_id, alice, [3, 4, 5, 6]).error_code == "limit"

    invalid = engine.lay_group(room_id, alice, [0, 1, 2])
    assert invalid.error_code == "invalid"
    assert invalid.error_message == "All non-wild cards in a group must share one rank"


def test_lay_cannot_empty_the_hand(engine, rig, started):
    room_id, (alice, _) = started
    room = engine.get_room(room_id)
    rig.hand(room, alice, ['8H', '8S', '8C'])
    room.players[0].has_drawn = True

    assert engine.lay_group(room_id, alice, [0, 1, 2]).error_code == "count"


def test_lay_run_in_round_three(engine, rig, started):
    """Round 3 asks for two runs."""
    room_id, (alice, _) = started
    for _ in range(2):
        go_out(engine, rig, room_id, alice)
        engine.next_hand(room_id, alice)

    room = engine.get_room(room_id)
    assert room.round_number == 3
    rig.hand(room, alice, ['3D', '5D', 'JOKER', '6D', 'QS', 'KS', 'AS', 'JS', '9H'])
    engine.draw(room_id, alice, "pile")

    result = engine.lay_run(room_id, alice, [0, 1, 2, 3])
    assert result.success
    assert result.data["laid_complete"] is False
    assert engine.lay_group(room_id, alice, [0, 1, 2]).error_code == "limit"
    assert engine.lay_run(room_id, alice, [0, 1, 2, 3]).data["laid_complete"] is True


def test_hit(engine, rig, started):
    room_id, (alice, bob) = started
    room = engine.get_room(room_id)
    seat = rig.hand(room, alice, ['8H', '8S', '8C', '9D', '9C', '9S', '8D', '4H'])
    engine.draw(room_id, alice, "pile")

    assert engine.hit(room_id, alice, alice, "group", 0, [6]).error_code == "need_laid"

    engine.lay_group(room_id, alice, [0, 1, 2])
    engine.lay_group(room_id, alice, [0, 1, 2])
    # Hand is now 8D, 4H and the drawn card
    assert engine.hit(room_id, alice, alice, "group", 5, [0]).error_code == "not_found"
    assert engine.hit(room_id, alice, bob, "group", 0, [0]).error_code == "not_found"
    assert engine.hit(room_id, alice, alice, "group", 0, [1]).error_code == "invalid"

    assert engine.hit(room_id, alice, alice, "group", 0, [0]).success
    assert [c.id for c in seat.laid_groups[0]] == ['8H', '8S', '8C', '8D']
    assert len(seat.hand) == 2
    assert room_cards(room) == FULL_SHOE


def test_hit_out_of_turn(engine, started):
    room_id, (alice, bob) = started
    assert engine.hit(room_id, bob, alice, "group", 0, [0]).error_code == "turn"


# ----------------------------------------------------------------------
# Hand lifecycle
# ----------------------------------------------------------------------

def test_going_out_scores_the_hand(engine, rig, started):
    """Discarding the last card ends the hand and scores what is left."""
    room_id, (alice, bob) = started
    go_out(engine, rig, room_id, alice)
    room = engine.get_room(room_id)
    bob_points = score_hand(room.players[1].hand)

    assert room.discard_pile[-1].id == "5H"

    assert room.hand_complete
    scores = {line.player_id: (line.hand, line.total) for line in room.last_scores}
    assert scores[alice] == (0, 0)
    assert scores[bob] == (bob_points, bob_points)
    assert room.players[1].total_score == bob_points
    assert room.turn_deadline is None

    assert engine.draw(room_id, bob, "pile").error_code == "hand_complete"


def test_next_hand_needs_finished_hand(engine, started):
    room_id, (alice, _) = started
    assert engine.next_hand(room_id, alice).error_code == "in_progress"


def test_reshuffle_when_pile_runs_out(engine, started):
    """An empty draw pile is rebuilt from every discard but the top one."""
    room_id, (alice, _) = started
    room = engine.get_room(room_id)
    top = room.discard_pile[-1]
    room.discard_pile[:0] = room.draw_pile
    room.draw_pile = []

    assert engine.draw(room_id, alice, "pile").success
    assert room.discard_pile == [top]
    assert len(room.draw_pile) == 108 - 15 - 1
    assert room_cards(room) == FULL_SHOE


def test_empty_pile_without_discards(engine, started):
    room_id, (alice, bob) = started
    room = engine.get_room(room_id)
    room.players[1].hand.extend(room.draw_pile)
    room.draw_pile = []

    assert engine.draw(room_id, alice, "pile").error_code == "empty"
    assert engine.draw(room_id, alice, "discard").success


def test_six_rounds_complete_the_match(engine, rig, fake_loop, updates, started):
    room_id, (alice, bob) = started

    for round_number in range(1, NUM_ROUNDS + 1):
        room = engine.get_room(room_id)
        assert room.round_number == round_number
        assert [len(p.hand) for p in room.players] == [get_deal_size(round_number)] * 2
        go_out(engine, rig, room_id, alice)
        result = engine.next_hand(room_id, alice)
        assert result.success
        assert result.data["match_complete"] is (round_number == NUM_ROUNDS)

    room = engine.get_room(room_id)
    assert room.closing
    assert room.end_reason == "complete"
    assert engine.next_hand(room_id, alice).error_code == "started"

    fake_loop.advance(15)

    assert engine.get_room(room_id) is None
    recent = engine.recent_matches()
    assert recent[0].id == room_id
    assert recent[0].reason == "complete"
    assert recent[0].players[0]["name"] == "Alice"
    assert updates[-1].closed
    assert updates[-1].notices[-1]["type"] == "room_closed"


def test_leaving_mid_hand_forfeits(engine, fake_loop, updates, started):
    room_id, (alice, bob) = started
    result = engine.leave_seat(room_id, bob)

    assert result.data == {"spectator_id": bob, "forfeit": True}
    room = engine.get_room(room_id)
    assert room.hand_complete and room.closing
    assert room.end_reason == "forfeit"
    assert [(l.name, l.hand) for l in room.last_scores] == [("Alice", 0)]
    # Bob's cards went back under the draw pile
    assert room_cards(room) == FULL_SHOE

    fake_loop.advance(15)
    assert engine.get_room(room_id) is None
    assert engine.recent_matches()[0].reason == "forfeit"
    assert updates[-1].closed
    assert updates[-1].notices[-1] == {"type": "room_closed", "reason": "forfeit"}


def test_close_room(engine, updates, lobby):
    room_id, (alice, bob) = lobby
    assert engine.close_room(room_id, "stranger").error_code == "not_player"
    assert engine.close_room(room_id, alice).error_code == "not_empty"

    engine.leave_seat(room_id, bob)
    assert engine.close_room(room_id, alice).success
    assert engine.get_room(room_id) is None
    assert updates[-1].closed
    assert updates[-1].notices == [{"type": "room_closed", "reason": "lobby_close"}]
    assert room_id not in engine.room_locks
    # Lobbies never played are not recorded
    assert engine.recent_matches() == []


def test_close_started_room(engine, started):
    room_id, (alice, _) = started
    assert engine.close_room(room_id, alice).error_code == "started"


def test_settings(engine, lobby):
    room_id, (alice, _) = lobby
    assert engine.set_turn_timer(room_id, alice, 1).data == {"turn_seconds": 5}
    assert engine.set_match_limit(room_id, alice, 500).data == {"match_limit_minutes": 120}
    assert engine.set_ready(room_id, alice, True).success
    assert engine.get_room(room_id).players[0].ready

    engine.start_match(room_id, alice)
    assert engine.set_match_limit(room_id, alice, 20).error_code == "in_progress"
    assert engine.set_ready(room_id, alice, False).error_code == "started"


def test_chat(engine, lobby):
    room_id, (alice, _) = lobby
    result = engine.chat(room_id, alice, "  hi  ")
    assert result.data == {"name": "Alice", "sender_id": alice, "text": "hi"}
    assert len(engine.chat(room_id, alice, "x" * 500).data["text"]) == 300
    assert engine.chat(room_id, alice, "   ").error_code == "invalid"
    assert engine.chat(room_id, "stranger", "hi").error_code == "not_player"


# ----------------------------------------------------------------------
# Atomicity
# ----------------------------------------------------------------------

def test_failed_actions_change_nothing(engine, updates, started):
    room_id, (alice, bob) = started
    before = engine.get_snapshot(room_id)
    published = len(updates)

    engine.draw(room_id, bob, "pile")
    engine.discard(room_id, alice, 0)
    engine.lay_group(room_id, alice, [0, 1, 2])
    engine.end_turn(room_id, alice)
    engine.join_room(room_id, "Carol")

    assert engine.get_snapshot(room_id) == before
    assert len(updates) == published


def test_internal_error_restores_room(engine, updates, monkeypatch, started):
    room_id, (alice, _) = started
    before = engine.get_snapshot(room_id)
    published = len(updates)

    def boom(room):
        room.players[0].hand.clear()
        raise RuntimeError("boom")

    monkeypatch.setattr(engine, "_take_from_pile", boom)
    result = engine.draw(room_id, alice, "pile")

    assert result.error_code == "internal"
    assert engine.get_snapshot(room_id) == before
    assert len(engine.get_room(room_id).players[0].hand) == 7
    assert len(updates) == published


def test_successful_actions_publish(engine, updates, started):
    room_id, (alice, _) = started
    version = engine.get_room(room_id).version
    engine.draw(room_id, alice, "pile")

    update = updates[-1]
    assert update.room_id == room_id
    assert update.state["version"] == version + 1
    assert update.events == ["Alice drew from the pile"]
    assert not update.closed


# ----------------------------------------------------------------------
# Locks and seat tokens
# ----------------------------------------------------------------------

def test_unknown_rooms_leave_no_locks(engine, lobby):
    room_id, (alice, _) = lobby
    before = set(engine.room_locks)

    for i in range(50):
        assert engine.draw(f"gone{i}", alice, "stock").error_code == "not_found"
        assert engine.set_ready(f"gone{i}", alice, True).error_code == "not_found"

    assert set(engine.room_locks) == before
    assert room_id in engine.room_locks


def test_join_hands_out_private_token(engine, lobby):
    room_id, _ = lobby
    carol = engine.join_room(room_id, "Carol")
    token = carol.data["token"]

    room = engine.get_room(room_id)
    assert token and room.players[2].token == token
    assert token not in repr(room.players[2])
    snapshot = engine.get_snapshot(room_id)
    assert all("token" not in p for p in snapshot["players"])


def test_resume_needs_seat_token(engine, started):
    room_id, (alice, bob) = started
    engine.disconnect(room_id, bob)
    alice_token = engine.get_room(room_id).players[0].token

    for token in ("", "0" * 32, alice_token):
        result = engine.resume(room_id, bob, token)
        assert result.error_code == "not_player"
    assert not engine.get_room(room_id).players[1].connected

    bob_token = engine.get_room(room_id).players[1].token
    assert engine.resume(room_id, bob, bob_token).success
    assert engine.get_room(room_id).players[1].connected
