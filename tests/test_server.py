import multiprocessing.connection
import os
import sys
import threading

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import config
import msocket
import protocol
from conftest import FakeListener, make_pipe
from protocol import RateLimiter
from server import Server, ServerConnectionHandler, parse_args
from world import World

_addresses = iter(range(1, 1000000))


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_server(world=None):
    handler = ServerConnectionHandler(listener=FakeListener())
    if world is None:
        world = World()
    return Server(world=world, handler=handler, bot_seed=5)


def deliver(server):
    handler = server.handler
    for p in list(handler.players):
        while p in handler.players and p.conn.poll():
            handler.receive(p)
    handler.flush()


def connect(server, name=None):
    client, server_end = make_pipe()
    n = next(_addresses)
    player = server.handler.admit(server_end, f"10.0.{n // 250}.{n % 250}")
    if name is not None:
        client.send((protocol.JOIN, name))
        deliver(server)
    return client, player


def kinds(messages):
    return [m[0] for m in messages]


def test_first_join_gets_empty_init():
    server = make_server()
    alice, player = connect(server, "Alice")
    messages = alice.drain()
    assert kinds(messages) == [protocol.INIT]
    init = messages[0][1]
    assert init['self_id'] == player.id
    assert init['players'] == []
    assert init['blocks'] == []
    assert init['removed'] == []
    assert server.avatars[player.id].name == "Alice"


def test_join_is_announced_to_others_only():
    server = make_server()
    alice, a = connect(server, "Alice")
    alice.drain()
    bob, b = connect(server, "<i>Bob</i>")

    bob_msgs = bob.drain()
    assert kinds(bob_msgs) == [protocol.INIT]
    others = bob_msgs[0][1]['players']
    assert [p['name'] for p in others] == ["Alice"]

    alice_msgs = alice.drain()
    assert alice_msgs == [(protocol.PLAYER_JOINED, server.avatars[b.id].to_network_dict())]
    assert alice_msgs[0][1]['name'] == "Bob"
    assert alice_msgs[0][1]['position'] == list(config.SPAWN_POSITION)


def test_invalid_name_falls_back_to_default():
    server = make_server()
    client, player = connect(server, "<>")
    assert player.name == player.default_name


def test_second_join_is_ignored():
    server = make_server()
    alice, a = connect(server, "Alice")
    alice.drain()
    alice.send((protocol.JOIN, "Mallory"))
    deliver(server)
    assert alice.drain() == []
    assert a.name == "Alice"


def test_placed_block_reaches_everyone():
    server = make_server()
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()

    alice.send((protocol.PLACE_BLOCK, {'x': 2, 'y': 5, 'z': 3, 'block_type': 'stone'}))
    deliver(server)
    expected = (protocol.BLOCK_PLACED, {'x': 2, 'y': 5, 'z': 3, 'block_type': 'stone'})
    assert bob.drain() == [expected]
    assert alice.drain() == [expected]
    assert server.world.is_solid(2, 5, 3)

    # placing into an occupied cell changes nothing and says nothing
    bob.send((protocol.PLACE_BLOCK, {'x': 2, 'y': 5, 'z': 3, 'block_type': 'wood'}))
    deliver(server)
    assert bob.drain() == []
    assert alice.drain() == []
    assert server.world.get_block(2, 5, 3).type == 'stone'


def test_late_joiner_gets_edits_in_init():
    server = make_server()
    alice, a = connect(server, "Alice")
    alice.send((protocol.PLACE_BLOCK, {'x': 2, 'y': 5, 'z': 3, 'block_type': 'stone'}))
    deliver(server)
    carol, c = connect(server, "Carol")
    init = carol.drain()[0][1]
    assert init['blocks'] == [{'x': 2, 'y': 5, 'z': 3, 'block_type': 'stone'}]


def test_floor_break_is_ignored():
    world = World()
    world.place_block(0, 0, 0, 'stone')
    world.place_block(3, 1, 3, 'dirt')
    server = make_server(world)
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()

    alice.send((protocol.BREAK_BLOCK, {'x': 0, 'y': 0, 'z': 0}))
    alice.send((protocol.BREAK_BLOCK, {'x': 3, 'y': 1, 'z': 3}))
    deliver(server)
    assert alice.drain() == []
    assert bob.drain() == []
    assert server.world.get_block(0, 0, 0).type == 'stone'
    assert server.world.get_block(3, 1, 3).type == 'dirt'


def test_break_reaches_everyone():
    world = World()
    world.place_block(4, 6, 4, 'wood')
    server = make_server(world)
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()
    alice.send((protocol.BREAK_BLOCK, {'x': 4, 'y': 6, 'z': 4}))
    deliver(server)
    expected = [(protocol.BLOCK_BROKEN, {'x': 4, 'y': 6, 'z': 4})]
    assert alice.drain() == expected
    assert bob.drain() == expected


def test_move_is_relayed_without_echo():
    server = make_server()
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()

    move = {'position': [1.5, 6.0, -2.0], 'rotation': [0.25, -0.1]}
    alice.send((protocol.MOVE, move))
    deliver(server)
    assert alice.drain() == []
    assert bob.drain() == [(protocol.PLAYER_MOVED, dict(move, id=a.id))]
    assert list(server.avatars[a.id].position) == move['position']


def test_malformed_messages_are_dropped_silently():
    server = make_server()
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()

    for raw in [
        "garbage",
        ("init", {}),
        (protocol.MOVE, {'position': [float('nan'), 0, 0], 'rotation': [0, 0]}),
        (protocol.MOVE, {'position': [1e6, 0, 0], 'rotation': [0, 0]}),
        (protocol.PLACE_BLOCK, {'x': 1, 'y': 2, 'z': 3, 'block_type': 'lava'}),
        (protocol.BREAK_BLOCK, [1, 2, 3]),
    ]:
        alice.send(raw)
    deliver(server)
    assert alice.drain() == []
    assert bob.drain() == []
    # the connection survives
    assert a in server.handler.players
    alice.send((protocol.MOVE, {'position': [0, 5, 0], 'rotation': [0, 0]}))
    deliver(server)
    assert kinds(bob.drain()) == [protocol.PLAYER_MOVED]


def test_messages_before_join_are_ignored():
    server = make_server()
    alice, a = connect(server, "Alice")
    alice.drain()
    lurker, l = connect(server)
    lurker.send((protocol.MOVE, {'position': [0, 5, 0], 'rotation': [0, 0]}))
    lurker.send((protocol.PLACE_BLOCK, {'x': 1, 'y': 9, 'z': 1, 'block_type': 'stone'}))
    deliver(server)
    assert alice.drain() == []
    assert server.world.get_block(1, 9, 1) is None
    assert l.id not in server.avatars


def test_message_rate_limit_drops_excess():
    server = make_server()
    clock = FakeClock()
    server.handler.message_limiter = RateLimiter(3, 1.0, clock=clock)
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()

    for i in range(5):
        alice.send((protocol.MOVE, {'position': [i, 5, 0], 'rotation': [0, 0]}))
    deliver(server)
    # join already used one of alice's three
    assert len(bob.drain()) == 2
    assert a in server.handler.players

    clock.now = 1.5
    alice.send((protocol.MOVE, {'position': [9, 5, 0], 'rotation': [0, 0]}))
    deliver(server)
    assert len(bob.drain()) == 1


def test_connection_rate_limit_closes_silently():
    server = make_server()
    for i in range(config.CONNECTION_RATE_LIMIT):
        client, server_end = make_pipe()
        assert server.handler.admit(server_end, "192.168.1.1") is not None
    client, server_end = make_pipe()
    assert server.handler.admit(server_end, "192.168.1.1") is None
    assert server_end.closed
    assert client.drain() == []


def _dial(address, authkey, results):
    try:
        results.append(multiprocessing.connection.Client(address, authkey=authkey))
    except (multiprocessing.AuthenticationError, EOFError, OSError) as ex:
        results.append(ex)


def test_bad_authkey_is_dropped_and_serving_continues():
    listener = msocket.Listener('127.0.0.1', 0)
    handler = ServerConnectionHandler(listener=listener)
    results = []
    try:
        t = threading.Thread(target=_dial, args=(listener.address, b'not the key', results))
        t.start()
        handler.poll(2.0)
        t.join(5.0)
        assert handler.players == []
        assert isinstance(results[0], Exception)

        t = threading.Thread(target=_dial, args=(listener.address, config.AUTHKEY, results))
        t.start()
        handler.poll(2.0)
        t.join(5.0)
        assert len(handler.players) == 1
        assert handler.players[0].address == '127.0.0.1'
    finally:
        for r in results:
            if not isinstance(r, Exception):
                r.close()
        handler.close_all()
        handler.close_listener()


def test_server_full(monkeypatch):
    monkeypatch.setattr(config, "MAX_PLAYERS", 20)
    server = make_server()
    clients = [connect(server, f"P{i}") for i in range(20)]
    for c, _ in clients:
        c.drain()
    before = {k: a.to_network_dict() for k, a in server.avatars.items()}

    late, server_end = make_pipe()
    assert server.handler.admit(server_end, "172.16.0.1") is None
    assert late.drain() == [(protocol.ERROR, {'message': protocol.SERVER_FULL})]
    assert server_end.closed
    deliver(server)

    assert len(server.handler.players) == 20
    assert {k: a.to_network_dict() for k, a in server.avatars.items()} == before
    for c, _ in clients:
        assert c.drain() == []


def test_quit_announces_departure():
    server = make_server()
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()
    alice.send((protocol.QUIT, None))
    deliver(server)
    assert bob.drain() == [(protocol.PLAYER_LEFT, a.id)]
    assert a.id not in server.avatars
    assert a not in server.handler.players


def test_dropped_connection_announces_departure():
    server = make_server()
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()
    alice.close()
    deliver(server)
    assert bob.drain() == [(protocol.PLAYER_LEFT, a.id)]
    assert a.id not in server.avatars


def test_unjoined_disconnect_is_quiet():
    server = make_server()
    alice, a = connect(server, "Alice")
    alice.drain()
    lurker, l = connect(server)
    lurker.close()
    deliver(server)
    assert alice.drain() == []
    assert l not in server.handler.players


def test_handler_exception_is_logged_and_loop_continues():
    server = make_server()
    alice, a = connect(server, "Alice")
    bob, b = connect(server, "Bob")
    alice.drain()
    bob.drain()

    def boom(player, data):
        raise RuntimeError("boom")

    server.handler.register_function(protocol.BREAK_BLOCK, boom)
    alice.send((protocol.BREAK_BLOCK, {'x': 1, 'y': 2, 'z': 3}))
    alice.send((protocol.MOVE, {'position': [0, 5, 0], 'rotation': [0, 0]}))
    deliver(server)
    assert kinds(bob.drain()) == [protocol.PLAYER_MOVED]
    assert a in server.handler.players


def test_bots_appear_in_init_and_move():
    server = make_server()
    server.bots.start(2)
    alice, a = connect(server, "Alice")
    init = alice.drain()[0][1]
    bots = [p for p in init['players'] if p['is_bot']]
    assert len(bots) == 2
    assert all(p['name'].startswith('[bot]') for p in bots)

    server.bots.tick(config.BOT_TICK_INTERVAL)
    server.handler.flush()
    moved = [m for m in alice.drain() if m[0] == protocol.PLAYER_MOVED]
    assert sorted(m[1]['id'] for m in moved) == sorted(p['id'] for p in bots)


def test_shutdown_notifies_and_closes():
    server = make_server()
    server.bots.start(1)
    alice, a = connect(server, "Alice")
    alice.drain()
    server.shutdown()
    messages = alice.drain()
    assert messages[0] == (protocol.ERROR, {'message': protocol.SHUTTING_DOWN})
    assert (protocol.PLAYER_LEFT, 'bot-0') in messages
    assert a.conn.closed
    assert server.handler.players == []
    assert server.handler.listener is None
    assert len(server.bots) == 0
    # second call is a no-op
    server.shutdown()


def test_parse_args():
    assert parse_args([]) == (config.SERVER_IP, config.SERVER_PORT, None)
    assert parse_args(['0.0.0.0:9000']) == ('0.0.0.0', 9000, None)
    assert parse_args(['example.org', '--bots', '3']) == ('example.org', config.SERVER_PORT, 3)
    with pytest.raises(ValueError):
        parse_args(['host:port'])
    with pytest.raises(IndexError):
        parse_args(['--bots'])
