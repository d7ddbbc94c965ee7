from petbattle.realtime.protocol import MessageType
from petbattle.realtime.registry import PlayerStatus
from petbattle.realtime.server import ConnectionEvent
from conftest import frame


def _search(server, sid, user_id):
    server.dispatch(sid, ConnectionEvent.MESSAGE,
                    frame(MessageType.SEARCH_MATCH, {'userId': user_id, 'petId': user_id * 10, 'level': 1}))


def _act(server, sid, match_id, actor_id, damage, **extra):
    payload = {'matchId': match_id, 'actorId': actor_id, 'actionType': 'ATTACK', 'damage': damage}
    payload.update(extra)
    server.dispatch(sid, ConnectionEvent.MESSAGE, frame(MessageType.BATTLE_ACTION, payload))


def _errors(transport, sid):
    return [f['payload']['code'] for f in transport.frames(sid, MessageType.ERROR)]


def _paired(battle_server, transport, connect_player):
    a, b = connect_player(1), connect_player(2)
    _search(battle_server, a, 1)
    _search(battle_server, b, 2)
    match_id = battle_server.registry.lookup(1).match_id
    transport.clear()
    return a, b, match_id


def test_join_broadcasts_presence(battle_server, transport, connect_player):
    a = connect_player(1)
    b = connect_player(2)
    latest = transport.frames(a, MessageType.ONLINE_PLAYERS)[-1]['payload']
    assert latest['count'] == 2
    assert transport.frames(b, MessageType.ONLINE_PLAYERS)[-1]['payload']['count'] == 2
    assert {p['userId'] for p in latest['players']} == {1, 2}


def test_two_searches_produce_match_and_start(battle_server, transport, connect_player):
    a, b = connect_player(1), connect_player(2)
    transport.clear()
    _search(battle_server, a, 1)
    assert transport.frames(a, MessageType.MATCH_FOUND) == []
    _search(battle_server, b, 2)

    found_a = transport.frames(a, MessageType.MATCH_FOUND)[0]['payload']
    found_b = transport.frames(b, MessageType.MATCH_FOUND)[0]['payload']
    assert found_a['matchId'] == found_b['matchId']
    assert found_a['opponent']['userId'] == 2 and found_b['opponent']['userId'] == 1

    for sid in (a, b):
        types = [f['type'] for f in transport.frames(sid)]
        assert types.index('MATCH_FOUND') < types.index('BATTLE_START')
        start = transport.frames(sid, MessageType.BATTLE_START)[0]['payload']
        assert start['player1']['hp'] == 100 and start['player2']['hp'] == 100
        assert {start['player1']['userId'], start['player2']['userId']} == {1, 2}

    assert list(battle_server.sessions) == [found_a['matchId']]


def test_action_broadcast_to_both(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _act(battle_server, a, match_id, 1, 30)
    for sid in (a, b):
        payload = transport.frames(sid, MessageType.BATTLE_ACTION)[0]['payload']
        assert payload['remainingHp'] == 70
        assert payload['hp'] == {'1': 100, '2': 70}
        assert payload['round'] == 1
        assert payload['nextTurn'] == 2


def test_knockout_ends_battle_for_both(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    for damage in (30, 30, 30):
        _act(battle_server, a, match_id, 1, damage)
    _act(battle_server, b, match_id, 2, 5)
    _act(battle_server, a, match_id, 1, 30)

    for sid in (a, b):
        ends = transport.frames(sid, MessageType.BATTLE_END)
        assert len(ends) == 1
        end = ends[0]['payload']
        assert end['winnerId'] == 1 and end['loserId'] == 2
        assert end['reason'] == 'KO'
        assert [e['actorId'] for e in end['battleLog']] == [1, 1, 1, 2, 1]
        assert [e['round'] for e in end['battleLog']] == [1, 2, 3, 4, 5]
        assert end['battleLog'][-1]['remainingHp'] == 0

    assert match_id not in battle_server.sessions
    assert battle_server.registry.lookup(1).status == PlayerStatus.IDLE
    assert battle_server.registry.lookup(2).status == PlayerStatus.IDLE

    transport.clear()
    _act(battle_server, a, match_id, 1, 10)
    assert _errors(transport, a) == ['MATCH_NOT_FOUND']
    assert transport.frames(b) == []


def test_disconnect_mid_battle_forfeits(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _act(battle_server, a, match_id, 1, 20)
    battle_server.dispatch(a, ConnectionEvent.DISCONNECTED)

    end = transport.frames(b, MessageType.BATTLE_END)[0]['payload']
    assert end['winnerId'] == 2 and end['loserId'] == 1
    assert end['reason'] == 'DISCONNECT'
    assert len(end['battleLog']) == 1
    assert match_id not in battle_server.sessions
    assert battle_server.registry.lookup(1) is None
    assert battle_server.registry.lookup(2).status == PlayerStatus.IDLE
    assert transport.frames(b, MessageType.ONLINE_PLAYERS)[-1]['payload']['count'] == 1


def test_three_searchers_pair_first_two(battle_server, transport, connect_player):
    sids = [connect_player(i) for i in (1, 2, 3)]
    for user_id, sid in zip((1, 2, 3), sids):
        _search(battle_server, sid, user_id)
    assert battle_server.queue.snapshot() == [3]
    session = next(iter(battle_server.sessions.values()))
    assert session.player_ids == (1, 2)
    assert transport.frames(sids[2], MessageType.MATCH_FOUND) == []


def test_protocol_errors_go_to_sender_only(battle_server, transport, connect_player):
    a, b = connect_player(1), connect_player(2)
    transport.clear()
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, {'type': 'TELEPORT', 'payload': {}})
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, '{oops')
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, frame(MessageType.SEARCH_MATCH, {'userId': 1}))
    assert _errors(transport, a) == ['UNKNOWN_TYPE', 'PARSE_ERROR', 'INVALID_PAYLOAD']
    assert transport.frames(b) == []
    assert battle_server.registry.lookup(1) is not None


def test_messages_before_join_are_rejected(battle_server, transport):
    battle_server.dispatch('sid-x', ConnectionEvent.JOINED)
    _search(battle_server, 'sid-x', 5)
    assert _errors(transport, 'sid-x') == ['NOT_JOINED']
    assert len(battle_server.queue) == 0


def test_cannot_act_for_someone_else(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _act(battle_server, a, match_id, 2, 50)
    assert _errors(transport, a) == ['PLAYER_MISMATCH']
    assert battle_server.sessions[match_id].health == {1: 100, 2: 100}


def test_action_outside_battle_rejected(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    c = connect_player(3)
    transport.clear()
    _act(battle_server, c, match_id, 3, 50)
    assert _errors(transport, c) == ['NOT_PARTICIPANT']
    _act(battle_server, a, 'match_unknown', 1, 50)
    assert _errors(transport, a) == ['MATCH_NOT_FOUND']
    assert transport.frames(b) == []


def test_search_while_battling_rejected(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _search(battle_server, a, 1)
    assert _errors(transport, a) == ['ALREADY_IN_BATTLE']
    assert 1 not in battle_server.queue


def test_duplicate_action_id_rejected(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _act(battle_server, a, match_id, 1, 10, actionId='x-1')
    _act(battle_server, a, match_id, 1, 10, actionId='x-1')
    assert _errors(transport, a) == ['DUPLICATE_ACTION']
    assert len(transport.frames(b, MessageType.BATTLE_ACTION)) == 1
    assert battle_server.sessions[match_id].health[2] == 90


def test_cancel_search(battle_server, transport, connect_player):
    a = connect_player(1)
    _search(battle_server, a, 1)
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, frame(MessageType.CANCEL_SEARCH, {'userId': 1}))
    assert transport.frames(a, MessageType.SEARCH_CANCELLED)[0]['payload'] == {'userId': 1}
    assert len(battle_server.queue) == 0
    assert battle_server.registry.lookup(1).status == PlayerStatus.IDLE
    # Cancelling again is harmless
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, frame(MessageType.CANCEL_SEARCH, {'userId': 1}))
    assert _errors(transport, a) == []


def test_surrender(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    battle_server.dispatch(b, ConnectionEvent.MESSAGE, frame(MessageType.SURRENDER, {'matchId': match_id, 'userId': 2}))
    for sid in (a, b):
        end = transport.frames(sid, MessageType.BATTLE_END)[0]['payload']
        assert end['winnerId'] == 1 and end['reason'] == 'FORFEIT'
    assert battle_server.sessions == {}


def test_leave_while_searching(battle_server, transport, connect_player):
    a = connect_player(1)
    _search(battle_server, a, 1)
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, frame(MessageType.PLAYER_LEAVE, {'userId': 1}))
    assert len(battle_server.queue) == 0
    assert battle_server.registry.lookup(1) is None
    b = connect_player(2)
    _search(battle_server, b, 2)
    assert battle_server.sessions == {}


def test_send_failure_does_not_block_opponent(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    transport.broken.add(a)
    _act(battle_server, a, match_id, 1, 100)
    end = transport.frames(b, MessageType.BATTLE_END)[0]['payload']
    assert end['winnerId'] == 1
    assert battle_server.sessions == {}


def test_reconnect_resumes_battle(battle_server, transport, connect_player):
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _act(battle_server, b, match_id, 2, 25)
    a2 = connect_player(1, sid='sid-1-again')

    assert transport.closed == [a]
    resync = transport.frames(a2, MessageType.BATTLE_START)[0]['payload']
    assert resync['matchId'] == match_id
    assert resync['hp'] == {'1': 75, '2': 100}
    # Late close event for the stale socket must not forfeit the battle
    battle_server.dispatch(a, ConnectionEvent.DISCONNECTED)
    assert match_id in battle_server.sessions

    _act(battle_server, a2, match_id, 1, 40)
    assert battle_server.sessions[match_id].health[2] == 60


def test_heartbeat_reply(battle_server, transport, connect_player):
    a = connect_player(1)
    battle_server.dispatch(a, ConnectionEvent.MESSAGE, frame(MessageType.HEARTBEAT, {}))
    reply = transport.frames(a, MessageType.HEARTBEAT)[-1]['payload']
    assert isinstance(reply['timestamp'], int)


def test_delayed_battle_start(transport, connect_player, battle_server):
    battle_server.battle_start_delay = 1.0
    a, b = connect_player(1), connect_player(2)
    _search(battle_server, a, 1)
    _search(battle_server, b, 2)
    assert transport.frames(a, MessageType.BATTLE_START) == []
    match_id = battle_server.registry.lookup(1).match_id

    # Actions are refused until both players have been told the battle started
    _act(battle_server, a, match_id, 1, 200)
    assert _errors(transport, a) == ['BATTLE_NOT_STARTED']
    assert battle_server.sessions[match_id].health == {1: 100, 2: 100}
    assert transport.frames(b, MessageType.BATTLE_ACTION) == []

    target, args = transport.spawned[-1]
    target(*args)
    assert len(transport.frames(a, MessageType.BATTLE_START)) == 1
    assert len(transport.frames(b, MessageType.BATTLE_START)) == 1

    _act(battle_server, a, match_id, 1, 40)
    assert battle_server.sessions[match_id].health[2] == 60


def test_rejoin_before_delayed_start_gets_one_battle_start(transport, connect_player, battle_server):
    battle_server.battle_start_delay = 1.0
    a, b = connect_player(1), connect_player(2)
    _search(battle_server, a, 1)
    _search(battle_server, b, 2)
    target, args = transport.spawned[-1]

    a2 = connect_player(1, sid='sid-1-again')
    assert transport.frames(a2, MessageType.BATTLE_START) == []
    target(*args)
    assert len(transport.frames(a2, MessageType.BATTLE_START)) == 1
    assert transport.frames(a, MessageType.BATTLE_START) == []


class FakePetStore:
    def __init__(self):
        self.saved = []

    def load_pet_snapshot(self, pet_id):
        return None

    def save_battle_result(self, winner_id, loser_id, gold_earned, exp_earned, match_id=None, winner_pet_id=None):
        self.saved.append((match_id, winner_id, loser_id, winner_pet_id, gold_earned, exp_earned))
        return {}


def test_result_is_saved_from_background_task(transport, connect_player, battle_server):
    store = FakePetStore()
    battle_server.pet_store = store
    battle_server.persist_async = True
    a, b, match_id = _paired(battle_server, transport, connect_player)
    _act(battle_server, a, match_id, 1, 100)

    # BATTLE_END went out, the write is only scheduled
    assert transport.frames(b, MessageType.BATTLE_END)
    assert store.saved == []
    target, args = transport.spawned[-1]
    target(*args)
    assert store.saved == [(match_id, 1, 2, 10, 100, 50)]


def test_result_is_saved_inline_when_not_async(transport, connect_player, battle_server):
    store = FakePetStore()
    battle_server.pet_store = store
    a, b, match_id = _paired(battle_server, transport, connect_player)
    battle_server.dispatch(a, ConnectionEvent.DISCONNECTED)
    assert store.saved == [(match_id, 2, 1, 20, 100, 50)]
    assert transport.spawned == []
