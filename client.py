import time

import numpy as np

import config
import logutil
import msocket
import protocol
from entities.player import LocalPlayer
from entity import Avatar
from util import wrap_angle
from world import World


class NullRenderer(object):
    '''
    Renderer collaborator that draws nothing. Anything with the same methods
    can be handed to ClientSession to mirror the world on screen.
    '''
    def add_block(self, x, y, z, block_type):
        pass

    def remove_block(self, x, y, z):
        pass

    def clear(self):
        pass


class ClientSession(object):
    '''
    One client's view of a multiplayer session.

    Keeps a local mirror of the world that converges on the server's by
    applying every block_placed/block_broken it is sent. Local edits are
    applied straight away and then sent; when the server's echo comes back
    the mirror already agrees and nothing happens. If someone else got to
    the cell first, the server's broadcast replaces our block.

    Other avatars are moved toward the last transform the server reported
    for them a fixed fraction per frame, so they glide between the 20Hz
    movement updates.
    '''
    def __init__(self, name, renderer=None, clock=time.monotonic):
        self.name = name
        self.renderer = renderer if renderer is not None else NullRenderer()
        self.clock = clock
        self.world = World(on_add=self._block_added, on_remove=self._block_removed)
        self.conn = None
        self.self_id = None
        self.player = None
        self.remote = {}
        self.targets = {}
        self.error = None
        self.last_move_sent = None
        self.fn_dict = {}
        self.register_function(protocol.INIT, self.init)
        self.register_function(protocol.PLAYER_JOINED, self.player_joined)
        self.register_function(protocol.PLAYER_LEFT, self.player_left)
        self.register_function(protocol.PLAYER_MOVED, self.player_moved)
        self.register_function(protocol.BLOCK_PLACED, self.block_placed)
        self.register_function(protocol.BLOCK_BROKEN, self.block_broken)
        self.register_function(protocol.ERROR, self.server_error)

    def register_function(self, name, fn):
        self.fn_dict[name] = fn

    def call_function(self, name, *args):
        return self.fn_dict[name](*args)

    @property
    def connected(self):
        return self.conn is not None

    def connect(self, ip=None, port=None):
        if ip is None:
            ip = config.SERVER_IP
        if port is None:
            port = config.SERVER_PORT
        logutil.log("CLIENT", f"connecting to server at {ip}:{port}")
        self.attach(msocket.Client(ip, port))

    def attach(self, conn):
        self.conn = conn
        self.error = None
        self.send(protocol.JOIN, self.name)

    def send(self, message, payload=None):
        if self.conn is None:
            return False
        try:
            self.conn.send((message, payload))
        except OSError:
            logutil.log("CLIENT", f"lost connection sending {message}", level="WARN")
            self.close()
            return False
        return True

    def pump(self):
        '''
        Handles every message already waiting on the connection without
        blocking. Returns the number handled.
        '''
        count = 0
        while self.conn is not None:
            try:
                if not self.conn.poll():
                    break
                message, payload = self.conn.recv()
            except (EOFError, OSError):
                logutil.log("CLIENT", "server closed the connection", level="WARN")
                self.close()
                break
            self.handle(message, payload)
            count += 1
        return count

    def handle(self, message, payload):
        if message not in self.fn_dict:
            logutil.log("CLIENT", f"ignoring unknown message {message!r}", level="DEBUG")
            return
        self.call_function(message, payload)

    def close(self):
        if self.conn is None:
            return
        try:
            self.conn.close()
        except OSError:
            pass
        self.conn = None

    def quit(self):
        self.send(protocol.QUIT)
        self.close()

    def _block_added(self, x, y, z, block_type):
        self.renderer.add_block(x, y, z, block_type)

    def _block_removed(self, x, y, z):
        self.renderer.remove_block(x, y, z)

    def init(self, payload):
        '''
        received once our join is accepted: rebuild the mirror from the
        server's snapshot and hand the result to the renderer in one pass
        '''
        self.self_id = payload['self_id']
        self.world.load_snapshot(payload)
        self.renderer.clear()
        for v in self.world.voxels():
            self.renderer.add_block(v.x, v.y, v.z, v.type)
        self.remote = {}
        self.targets = {}
        for data in payload.get('players', []):
            self.player_joined(data)
        self.player = LocalPlayer(self.self_id, self.name)
        logutil.log("CLIENT", f"joined as {self.self_id} with {len(self.remote)} other players")

    def player_joined(self, data):
        if data['id'] == self.self_id:
            return
        avatar = Avatar.from_network_dict(data)
        self.remote[avatar.id] = avatar
        self.targets[avatar.id] = (avatar.position.copy(), avatar.rotation.copy())

    def player_left(self, avatar_id):
        self.remote.pop(avatar_id, None)
        self.targets.pop(avatar_id, None)

    def player_moved(self, data):
        if data['id'] not in self.remote:
            return
        self.targets[data['id']] = (np.array(data['position'], dtype=float),
                                    np.array(data['rotation'], dtype=float))

    def block_placed(self, data):
        '''
        the server's block wins: an optimistic local block of another type
        in the same cell is swapped out
        '''
        x, y, z, block_type = data['x'], data['y'], data['z'], data['block_type']
        current = self.world.get_block(x, y, z)
        if current is not None:
            if current.type == block_type:
                return
            self.world.remove_block(x, y, z)
        self.world.place_block(x, y, z, block_type)

    def block_broken(self, data):
        self.world.remove_block(data['x'], data['y'], data['z'])

    def server_error(self, data):
        self.error = data.get('message') if isinstance(data, dict) else data
        logutil.log("CLIENT", f"server error: {self.error}", level="WARN")
        self.close()

    def place_block(self, x, y, z, block_type):
        if not self.world.place_block(x, y, z, block_type):
            return False
        self.send(protocol.PLACE_BLOCK, {'x': x, 'y': y, 'z': z, 'block_type': block_type})
        return True

    def break_block(self, x, y, z):
        if not self.world.break_block(x, y, z):
            return False
        self.send(protocol.BREAK_BLOCK, {'x': x, 'y': y, 'z': z})
        return True

    def send_movement(self, position=None, rotation=None):
        '''
        Sends our transform unless one went out less than MOVE_SEND_INTERVAL
        ago. Returns True if a move was sent.
        '''
        if position is None:
            position = self.player.position
        if rotation is None:
            rotation = self.player.rotation
        now = self.clock()
        if self.last_move_sent is not None and now - self.last_move_sent < config.MOVE_SEND_INTERVAL:
            return False
        self.last_move_sent = now
        return self.send(protocol.MOVE, {
            'position': [float(v) for v in position],
            'rotation': [float(v) for v in rotation],
        })

    def interpolate(self):
        f = config.INTERPOLATION_FACTOR
        for avatar_id, avatar in self.remote.items():
            target = self.targets.get(avatar_id)
            if target is None:
                continue
            position, rotation = target
            avatar.position += (position - avatar.position) * f
            # turn the short way round
            avatar.rotation[0] += wrap_angle(rotation[0] - avatar.rotation[0]) * f
            avatar.rotation[1] += (rotation[1] - avatar.rotation[1]) * f

    def update(self, dt):
        self.pump()
        if self.player is not None:
            self.player.update(dt, self.world)
            self.send_movement()
        self.interpolate()
