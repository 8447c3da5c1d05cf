class Block(object):
    name = None
    # Solid blocks stop avatars; non-solid blocks still occupy their cell.
    solid = True
    breakable = True
    # RGB hint for the renderer.
    color = (255, 255, 255)

class Grass(Block):
    name = 'grass'
    color = (124, 189, 107)

class Dirt(Block):
    name = 'dirt'
    color = (139, 90, 60)

class Stone(Block):
    name = 'stone'
    color = (128, 128, 128)

class Wood(Block):
    name = 'wood'
    color = (139, 105, 20)

class Sand(Block):
    name = 'sand'
    color = (244, 231, 199)

class Water(Block):
    name = 'water'
    color = (74, 144, 226)
    solid = False
    breakable = False

class Leaves(Block):
    name = 'leaves'
    color = (50, 150, 70)

BLOCKS = [
    Grass,
    Dirt,
    Stone,
    Wood,
    Sand,
    Water,
    Leaves,
]

BLOCK_TYPES = {b.name: b for b in BLOCKS}

WATER = Water.name

# Materials bots pick from. Structure plans index into the front of this list.
BOT_MATERIALS = ('grass', 'dirt', 'stone', 'wood', 'sand')


def is_block_type(name):
    return isinstance(name, str) and name in BLOCK_TYPES


def is_solid_type(name):
    return BLOCK_TYPES[name].solid


def is_breakable_type(name):
    return BLOCK_TYPES[name].breakable
