# standard library imports
import multiprocessing
import select
import signal
import sys
import time

import config
import logutil
import msocket
import protocol
from bot_manager import BotManager
from entity import Avatar
from players import Player
from protocol import RateLimiter
from world import World


def start_server(ip, port, bots=None):
    config.SERVER_IP = ip
    config.SERVER_PORT = port
    server = Server()
    server.run(bots)
    return server


class ServerConnectionHandler(object):
    '''
    Handles the low level connection handling details of the multiplayer server
    '''
    def __init__(self, listener=None):
        if listener is None:
            logutil.log("SERVER", f"starting server at {config.SERVER_IP}:{config.SERVER_PORT}")
            listener = msocket.Listener(config.SERVER_IP, config.SERVER_PORT)
        self.listener = listener
        self.players = []
        self.fn_dict = {}
        self.server_owner = None
        self.alive = False
        self.connection_limiter = RateLimiter(config.CONNECTION_RATE_LIMIT, config.CONNECTION_RATE_WINDOW)
        self.message_limiter = RateLimiter(config.MESSAGE_RATE_LIMIT, config.MESSAGE_RATE_WINDOW)

    def register_function(self, name, fn):
        self.fn_dict[name] = fn

    def call_function(self, name, *args):
        return self.fn_dict[name](*args)

    def connections(self):
        return [p.conn for p in self.players]

    def connections_with_comms(self):
        return [p.conn for p in self.players if len(p.comms_queue) > 0]

    def joined_players(self):
        return [p for p in self.players if p.joined]

    def admit(self, conn, address=None):
        '''
        Decides whether a freshly accepted connection gets a Player record.
        Connections over the per-address rate are closed without a word; a
        full server says so before closing.
        '''
        if not self.connection_limiter.allow(address):
            logutil.log("SERVER", f"connection rate exceeded for {address}", level="WARN")
            conn.close()
            return None
        if len(self.players) >= config.MAX_PLAYERS:
            logutil.log("SERVER", f"server full, rejecting {address}", level="WARN")
            try:
                conn.send((protocol.ERROR, {'message': protocol.SERVER_FULL}))
            except OSError:
                pass
            conn.close()
            return None
        player = Player(conn, address)
        self.players.append(player)
        logutil.log("SERVER", f"connected new player id {player.id} from {address}")
        return player

    def accept_connection(self):
        self.connection_limiter.prune()
        try:
            conn, address = self.listener.accept_with_address()
        except (OSError, EOFError, multiprocessing.AuthenticationError) as ex:
            # the authkey handshake runs inside accept() on this thread, so a
            # client that connects and then says nothing holds up the loop
            # until it sends or hangs up
            logutil.log("SERVER", f"accept failed: {ex!r}", level="WARN")
            return None
        return self.admit(conn, address)

    def receive(self, player):
        '''
        Reads one message from `player` and dispatches it. Malformed and
        rate limited messages are dropped; a closed connection drops the
        player.
        '''
        try:
            raw = player.conn.recv()
        except (EOFError, OSError):
            logutil.log("SERVER", f"disconnect EOF for player {player.id} ({player.name})", level="WARN")
            self.drop_player(player)
            return
        except Exception as ex:
            logutil.log("SERVER", f"undecodable message from {player.id}: {ex!r}", level="WARN")
            return
        if not self.message_limiter.allow(player.id):
            logutil.log("SERVER", f"rate limited message from {player.id}", level="DEBUG")
            return
        parsed = protocol.parse_message(raw)
        if parsed is None:
            logutil.log("SERVER", f"dropped malformed message from {player.id}", level="DEBUG")
            return
        msg, data = parsed
        logutil.log("SERVER", f"received {msg} from player {player.id} ({player.name})", level="DEBUG")
        try:
            self.call_function(msg, player, data)
        except Exception:
            logutil.log_exception("SERVER", f"handler for {msg} failed for player {player.id}")

    def poll(self, timeout=None):
        if timeout is None:
            timeout = config.SELECT_TIMEOUT
        r, w, x = select.select([self.listener] + self.connections(), self.connections_with_comms(), [], timeout)
        for p in list(self.players):
            if p.conn in r and p in self.players:
                self.receive(p)
        for p in list(self.players):
            if p.conn in w and p in self.players:
                self.dispatch_top_message(p)
        if self.listener in r:
            self.accept_connection()

    def serve(self, idle=None):
        '''
        Runs the select loop until `alive` is cleared. `idle` is called once
        per iteration.
        '''
        self.alive = True
        while self.alive:
            try:
                self.poll()
            except KeyboardInterrupt:
                logutil.log("SERVER", "received keyboard interrupt", level="WARN")
                break
            if idle is not None:
                idle()
        self.alive = False

    def queue_for_player(self, player, message, payload=None):
        player.comms_queue.append((message, payload))

    def queue_for_others(self, player, message, payload=None):
        for p in self.joined_players():
            if p != player:
                p.comms_queue.append((message, payload))

    def queue_for_all_players(self, message, payload=None):
        for p in self.joined_players():
            p.comms_queue.append((message, payload))

    def dispatch_top_message(self, player):
        message = player.comms_queue.pop(0)
        logutil.log("SERVER", f"sending {message[0]} to {player.id} ({player.name})", level="DEBUG")
        try:
            player.conn.send(message)
        except OSError:
            logutil.log("SERVER", f"send failed for player {player.id}", level="WARN")
            self.drop_player(player)

    def flush(self, timeout=None):
        '''
        Sends every queued message, giving up after `timeout` seconds.
        Returns True if all queues were emptied.
        '''
        deadline = None if timeout is None else time.monotonic() + timeout
        for p in list(self.players):
            while p.comms_queue and p in self.players:
                if deadline is not None and time.monotonic() > deadline:
                    return False
                self.dispatch_top_message(p)
        return True

    def drop_player(self, player):
        if player not in self.players:
            return
        self.players.remove(player)
        self.message_limiter.forget(player.id)
        try:
            player.conn.close()
        except OSError:
            pass
        logutil.log("SERVER", f"player {player.id} ({player.name}) disconnected")
        if self.server_owner is not None:
            self.server_owner.player_dropped(player)

    def close_listener(self):
        if self.listener is not None:
            self.listener.close()
            self.listener = None

    def close_all(self):
        for p in list(self.players):
            try:
                p.conn.close()
            except OSError:
                pass
        self.players = []


class Server(object):
    '''
    Multiplayer relay server
    manages connections from players and relays their edits and movement

    Maintains the following state
        the canonical world (terrain generated from the seed plus edits)
        the avatar table (joined players and bots)

    Server Messages (client must have handlers for these)
        init(snapshot)
            sent to a player once its join is accepted: its id, the other
            avatars and the world seed/edits
        player_joined(avatar)
            notifies all other players that `avatar` has joined
        player_left(id)
            notifies all players that the avatar `id` is gone
        player_moved(id, position, rotation)
            notifies all other players of a new transform
        block_placed(x, y, z, block_type) / block_broken(x, y, z)
            notifies all players (sender included) of an applied edit
        error(message)
            server full or shutting down

    Positions are taken on trust: the server checks that they are sane
    numbers but doesn't run physics on them.
    '''
    def __init__(self, world=None, handler=None, bot_seed=None, clock=None):
        self.handler = handler if handler is not None else ServerConnectionHandler()
        self.handler.server_owner = self
        if world is None:
            world = World()
            world.generate_terrain()
        self.world = world
        self.world.on_add = self.block_added
        self.world.on_remove = self.block_removed
        logutil.log("SERVER", f"ready seed={self.world.seed}")
        self.avatars = {}
        self.bots = BotManager(self.world, self.avatars, self.broadcast, seed=bot_seed, clock=clock)
        self.stopped = False
        self.handler.register_function(protocol.JOIN, self.join)
        self.handler.register_function(protocol.MOVE, self.move)
        self.handler.register_function(protocol.PLACE_BLOCK, self.place_block)
        self.handler.register_function(protocol.BREAK_BLOCK, self.break_block)
        self.handler.register_function(protocol.QUIT, self.quit)

    def run(self, bots=None):
        signal.signal(signal.SIGINT, self.request_shutdown)
        signal.signal(signal.SIGTERM, self.request_shutdown)
        self.bots.start(bots)
        try:
            self.handler.serve(idle=self.bots.pump)
        finally:
            self.shutdown()

    def request_shutdown(self, signum=None, frame=None):
        logutil.log("SERVER", f"shutdown requested (signal {signum})", level="WARN")
        self.handler.alive = False

    def shutdown(self):
        if self.stopped:
            return
        self.stopped = True
        logutil.log("SERVER", "shutting down")
        for p in list(self.handler.players):
            self.handler.queue_for_player(p, protocol.ERROR, {'message': protocol.SHUTTING_DOWN})
        self.bots.stop()
        self.handler.close_listener()
        if not self.handler.flush(config.SHUTDOWN_GRACE):
            logutil.log("SERVER", "grace period expired with unsent messages", level="WARN")
        self.handler.close_all()

    def broadcast(self, message, payload):
        self.handler.queue_for_all_players(message, payload)

    def block_added(self, x, y, z, block_type):
        self.broadcast(protocol.BLOCK_PLACED, {'x': x, 'y': y, 'z': z, 'block_type': block_type})

    def block_removed(self, x, y, z):
        self.broadcast(protocol.BLOCK_BROKEN, {'x': x, 'y': y, 'z': z})

    def player_dropped(self, player):
        if not player.joined:
            return
        self.avatars.pop(player.id, None)
        self.broadcast(protocol.PLAYER_LEFT, player.id)

    def join(self, player, data):
        '''
        registers the player's avatar under a sanitized name and sends it the
        world; only the first join on a connection counts
        '''
        if player.joined:
            return
        name = protocol.validate_join(data, player.default_name)
        player.name = name
        player.avatar = Avatar(player.id, name, position=config.SPAWN_POSITION)
        others = [a.to_network_dict() for a in self.avatars.values()]
        self.avatars[player.id] = player.avatar
        init = {'self_id': player.id, 'players': others}
        init.update(self.world.snapshot())
        self.handler.queue_for_player(player, protocol.INIT, init)
        self.handler.queue_for_others(player, protocol.PLAYER_JOINED, player.avatar.to_network_dict())
        logutil.log("SERVER", f"player {player.id} joined as {name}")

    def move(self, player, data):
        '''
        stores the reported transform and relays it to every other player;
        the sender never gets its own move back
        '''
        if not player.joined:
            return
        move = protocol.validate_move(data)
        if move is None:
            return
        player.avatar.set_transform(move['position'], move['rotation'])
        self.handler.queue_for_others(player, protocol.PLAYER_MOVED, {
            'id': player.id,
            'position': move['position'],
            'rotation': move['rotation'],
        })

    def place_block(self, player, data):
        if not player.joined:
            return
        block = protocol.validate_place(data)
        if block is None:
            return
        self.world.place_block(block['x'], block['y'], block['z'], block['block_type'])

    def break_block(self, player, data):
        if not player.joined:
            return
        block = protocol.validate_break(data)
        if block is None:
            return
        self.world.break_block(block['x'], block['y'], block['z'])

    def quit(self, player, data=None):
        logutil.log("SERVER", f"player {player.id} requested disconnect")
        self.handler.drop_player(player)


def parse_args(argv):
    '''
    [host | host:port | LAN] [--bots N]
    '''
    args = list(argv)
    bots = None
    if '--bots' in args:
        i = args.index('--bots')
        bots = int(args[i + 1])
        del args[i:i + 2]
    ip, port = config.SERVER_IP, config.SERVER_PORT
    if args:
        if args[0] == 'LAN':
            ip = msocket.get_network_ip()
        elif ':' in args[0]:
            ip, port = args[0].split(':', 1)
            port = int(port)
        else:
            ip = args[0]
    return ip, port, bots


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    if config.SERVER_LOG_FILE_PATH:
        config.LOG_FILE_PATH = config.SERVER_LOG_FILE_PATH
        config.LOG_FILE_APPEND = True
    try:
        ip, port, bots = parse_args(argv)
    except (IndexError, ValueError):
        logutil.log("SERVER", f"usage: server.py [host|host:port|LAN] [--bots N], got {argv}", level="ERROR")
        return 2
    try:
        print(f"SERVER: listening on {ip}:{port}")
        start_server(ip, port, bots)
    except Exception:
        logutil.log_exception("SERVER", "fatal error")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
