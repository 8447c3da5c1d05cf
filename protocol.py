"""
Wire messages between clients and the relay server.

Every message on the wire is a `(kind, payload)` tuple. Inbound kinds form a
closed set; anything else, and any payload that fails its validator, is
dropped without a reply so a misbehaving client learns nothing about why.

Client -> server
    join(name)
    move({'position': [x, y, z], 'rotation': [yaw, pitch]})
    place_block({'x', 'y', 'z', 'block_type'})
    break_block({'x', 'y', 'z'})
    quit(None)

Server -> client
    init({'self_id', 'players', 'seed', 'center', 'extent', 'blocks', 'removed'})
    player_joined(avatar dict)              to everyone but the new player
    player_left(id)                         to everyone
    player_moved({'id', 'position', 'rotation'})   to everyone but the mover
    block_placed({'x', 'y', 'z', 'block_type'})    to everyone
    block_broken({'x', 'y', 'z'})                  to everyone
    error({'message'})                      server full / shutting down
"""
import math
import re
import time

import config
from blocks import is_block_type

JOIN = 'join'
MOVE = 'move'
PLACE_BLOCK = 'place_block'
BREAK_BLOCK = 'break_block'
QUIT = 'quit'

INBOUND = frozenset([JOIN, MOVE, PLACE_BLOCK, BREAK_BLOCK, QUIT])

INIT = 'init'
PLAYER_JOINED = 'player_joined'
PLAYER_LEFT = 'player_left'
PLAYER_MOVED = 'player_moved'
BLOCK_PLACED = 'block_placed'
BLOCK_BROKEN = 'block_broken'
ERROR = 'error'

OUTBOUND = frozenset([INIT, PLAYER_JOINED, PLAYER_LEFT, PLAYER_MOVED, BLOCK_PLACED, BLOCK_BROKEN, ERROR])

SERVER_FULL = 'Server full'
SHUTTING_DOWN = 'Server shutting down'

_MARKUP = re.compile(r'<[^>]*>|[<>]')
_CONTROL = re.compile(r'[\x00-\x1f\x7f-\x9f\u200b-\u200f\u2028-\u202f\u2060-\u206f\ufeff]')


def parse_message(raw):
    """ Returns (kind, payload) for a well-formed inbound message, else None. """
    if not isinstance(raw, (tuple, list)) or len(raw) != 2:
        return None
    kind, payload = raw
    if not isinstance(kind, str) or kind not in INBOUND:
        return None
    return kind, payload


def sanitize_name(raw, fallback):
    """Strip markup/control chars, collapse whitespace, limit length."""
    if not isinstance(raw, str):
        return fallback
    name = _MARKUP.sub('', raw)
    name = _CONTROL.sub('', name)
    name = ' '.join(name.split())
    name = name[:config.MAX_NAME_LENGTH].strip()
    return name if name else fallback


def _is_number(v):
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def finite_in_range(v, limit=None):
    if limit is None:
        limit = config.COORD_LIMIT
    if not _is_number(v):
        return False
    if isinstance(v, float) and not math.isfinite(v):
        return False
    return abs(v) < limit


def _vector(v, size):
    if isinstance(v, dict):
        keys = ('x', 'y', 'z')[:size] if size == 3 else ('yaw', 'pitch')
        try:
            v = [v[k] for k in keys]
        except KeyError:
            return None
    if not isinstance(v, (tuple, list)) or len(v) != size:
        return None
    if not all(finite_in_range(c) for c in v):
        return None
    return [float(c) for c in v]


def _block_coord(v):
    if isinstance(v, bool):
        return None
    if isinstance(v, float):
        if not math.isfinite(v) or not v.is_integer():
            return None
        v = int(v)
    if not isinstance(v, int) or abs(v) >= config.COORD_LIMIT:
        return None
    return v


def validate_join(payload, fallback):
    if isinstance(payload, dict):
        payload = payload.get('name')
    return sanitize_name(payload, fallback)


def validate_move(payload):
    if not isinstance(payload, dict):
        return None
    position = _vector(payload.get('position'), 3)
    rotation = _vector(payload.get('rotation'), 2)
    if position is None or rotation is None:
        return None
    return {'position': position, 'rotation': rotation}


def _validate_coords(payload):
    if not isinstance(payload, dict):
        return None
    coords = [_block_coord(payload.get(k)) for k in ('x', 'y', 'z')]
    if any(c is None for c in coords):
        return None
    return coords


def validate_place(payload):
    coords = _validate_coords(payload)
    if coords is None:
        return None
    block_type = payload.get('block_type')
    if not is_block_type(block_type):
        return None
    x, y, z = coords
    return {'x': x, 'y': y, 'z': z, 'block_type': block_type}


def validate_break(payload):
    coords = _validate_coords(payload)
    if coords is None:
        return None
    x, y, z = coords
    return {'x': x, 'y': y, 'z': z}


class RateLimiter(object):
    '''
    Fixed window counter: at most `limit` events per `window` seconds for each
    key. Events over the limit are refused, never queued.
    '''
    def __init__(self, limit, window, clock=time.monotonic):
        self.limit = limit
        self.window = window
        self.clock = clock
        self._windows = {}

    def allow(self, key):
        now = self.clock()
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window:
            start, count = now, 0
        count += 1
        self._windows[key] = (start, count)
        return count <= self.limit

    def forget(self, key):
        self._windows.pop(key, None)

    def prune(self):
        now = self.clock()
        for key, (start, _) in list(self._windows.items()):
            if now - start >= self.window:
                del self._windows[key]
