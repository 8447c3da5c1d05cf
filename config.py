import math
import os


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        return default

# World
WORLD_SEED = _env_int('WORLD_SEED', 1337)
TERRAIN_CENTER = (0, 0)
# Half-width of the square region generated at startup (x and z).
TERRAIN_EXTENT = 16
# Soft bounds on X/Z for bots.
WORLD_BOUNDS = 60
BASE_HEIGHT = 5
WATER_LEVEL = 5
# Blocks at or below this y can't be broken.
FLOOR_PROTECT_Y = 1
# Ground scan for bots starts here and walks down.
GROUND_SCAN_TOP = 30
TREE_CHANCE = 3  # percent per column
COORD_LIMIT = 10000

# Physics
TICKS_PER_SEC = 60
GRAVITY = -20.0
WALKING_SPEED = 4.3
JUMP_SPEED = 7.0
# Residual horizontal velocity multiplier per step when no input is held.
FRICTION = 0.8
PLAYER_RADIUS = 0.3
PLAYER_HEIGHT = 1.8
REACH_DISTANCE = 5
MOUSE_SENSITIVITY = 0.002
MAX_PITCH = math.pi / 2 - 0.01

# Network
SERVER_IP = 'localhost'
SERVER_PORT = _env_int('PORT', 20226)
AUTHKEY = b'voxelcraft'
MAX_PLAYERS = _env_int('MAX_PLAYERS', 20)
MAX_NAME_LENGTH = 24
SPAWN_POSITION = (0.0, 20.0, 0.0)
# Per connection: MESSAGE_RATE_LIMIT messages per MESSAGE_RATE_WINDOW seconds.
MESSAGE_RATE_LIMIT = 60
MESSAGE_RATE_WINDOW = 1.0
# Per source address: CONNECTION_RATE_LIMIT connects per CONNECTION_RATE_WINDOW seconds.
CONNECTION_RATE_LIMIT = 5
CONNECTION_RATE_WINDOW = 10.0
SELECT_TIMEOUT = 0.05
SHUTDOWN_GRACE = 5.0

# Client
MOVE_SEND_INTERVAL = 0.05
INTERPOLATION_FACTOR = 0.3

# Bots
BOT_COUNT = _env_int('AI_BOTS', 0)
BOT_TICK_INTERVAL = 0.1
BOT_SPEED = 3.0
BOT_FALL_SPEED = 10.0
BOT_IDLE_TURN_RATE = 0.5

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
LOG_COLOR = True
LOG_FILE_PATH = None
LOG_FILE_APPEND = True
SERVER_LOG_FILE_PATH = 'log-server.txt'
