import random
from collections import namedtuple

import numpy

import config
import logutil
import heightmap
from blocks import WATER, is_breakable_type, is_solid_type
from util import normalize

Voxel = namedtuple('Voxel', ['x', 'y', 'z', 'type'])


class World(object):
    '''
    Sparse voxel store shared by the server, client mirrors and bots.

    Blocks are kept in a dict keyed by the integer (x, y, z) tuple; a missing
    key is air. Terrain comes from a deterministic generator, so the only
    state that has to travel over the network is the seed plus the edits
    made since generation.

    on_add(x, y, z, block_type) / on_remove(x, y, z) are called after every
    successful place/break (not during generation). The server hooks them up
    to broadcasts, clients hook them up to the renderer.
    '''
    def __init__(self, seed=None, on_add=None, on_remove=None):
        self.seed = config.WORLD_SEED if seed is None else seed
        self.on_add = on_add
        self.on_remove = on_remove
        self.blocks = {}
        # key -> block type placed since generation, or None if removed
        self.edits = {}
        self.center = None
        self.extent = 0
        self.rng = random.Random(self.seed)

    def __len__(self):
        return len(self.blocks)

    def reset(self):
        self.blocks = {}
        self.edits = {}
        self.center = None
        self.extent = 0
        self.rng = random.Random(self.seed)

    def get_terrain_height(self, x, z):
        return heightmap.terrain_height(x, z)

    def get_block(self, x, y, z):
        t = self.blocks.get((x, y, z))
        if t is None:
            return None
        return Voxel(x, y, z, t)

    def is_solid(self, x, y, z):
        if y <= 0:
            return True
        t = self.blocks.get(normalize((x, y, z)))
        return t is not None and is_solid_type(t)

    def is_water(self, x, y, z):
        return self.blocks.get(normalize((x, y, z))) == WATER

    def get_ground_height(self, x, z):
        """ Returns the y an avatar standing at (x, z) should have: one above
        the highest non-water block under the scan ceiling, or the terrain
        surface when the column is empty.
        """
        ix, _, iz = normalize((x, 0, z))
        for y in range(config.GROUND_SCAN_TOP, -1, -1):
            t = self.blocks.get((ix, y, iz))
            if t is not None and t != WATER:
                return y + 1
        return self.get_terrain_height(ix, iz) + 1

    def _insert(self, x, y, z, block_type):
        key = (x, y, z)
        if key in self.blocks:
            return False
        self.blocks[key] = block_type
        return True

    def place_block(self, x, y, z, block_type):
        '''
        Adds `block_type` at (x, y, z) unless something is already there.
        Returns True if the world changed.
        '''
        if not self._insert(x, y, z, block_type):
            return False
        self.edits[(x, y, z)] = block_type
        if self.on_add is not None:
            self.on_add(x, y, z, block_type)
        return True

    def break_block(self, x, y, z):
        '''
        Removes the block at (x, y, z). Water and anything at or below the
        floor protection height stays put. Returns True if the world changed.
        '''
        key = (x, y, z)
        t = self.blocks.get(key)
        if t is None:
            return False
        if not is_breakable_type(t) or y <= config.FLOOR_PROTECT_Y:
            return False
        return self.remove_block(x, y, z)

    def remove_block(self, x, y, z):
        '''
        Removes whatever is at (x, y, z) with no protection checks. Mirrors
        use this to apply the server's decisions. Returns True if the world
        changed.
        '''
        key = (x, y, z)
        if key not in self.blocks:
            return False
        del self.blocks[key]
        self.edits[key] = None
        if self.on_remove is not None:
            self.on_remove(x, y, z)
        return True

    def generate_terrain(self, center=None, extent=None):
        if center is None:
            center = config.TERRAIN_CENTER
        if extent is None:
            extent = config.TERRAIN_EXTENT
        cx, cz = int(center[0]), int(center[1])
        self.center = (cx, cz)
        self.extent = int(extent)
        xs, zs = numpy.meshgrid(
            numpy.arange(cx - extent, cx + extent),
            numpy.arange(cz - extent, cz + extent),
            indexing='ij',
        )
        heights = heightmap.terrain_heights(xs, zs)
        before = len(self.blocks)
        for x, z, height in zip(xs.ravel().tolist(), zs.ravel().tolist(), heights.ravel().tolist()):
            self._generate_column(x, z, height)
        logutil.log("WORLD", f"generated terrain at {self.center} extent {self.extent}: {len(self.blocks) - before} blocks")

    def _generate_column(self, x, z, height):
        low = height < 6
        for y in range(0, height + 1):
            if y == height:
                t = 'sand' if low else 'grass'
            elif y > height - 3:
                t = 'sand' if low else 'dirt'
            else:
                t = 'stone'
            self._insert(x, y, z, t)
        if height < config.WATER_LEVEL:
            for y in range(height + 1, config.WATER_LEVEL + 1):
                self._insert(x, y, z, WATER)
        if not low and heightmap.should_place_tree(x, z):
            self._generate_tree(x, height + 1, z)

    def _generate_tree(self, x, base_y, z):
        trunk_height = 4 + self.rng.randrange(2)
        for y in range(trunk_height):
            self._insert(x, base_y + y, z, 'wood')
        top = base_y + trunk_height
        for dx in range(-2, 3):
            for dy in range(-1, 3):
                for dz in range(-2, 3):
                    if abs(dx) + abs(dy) + abs(dz) < 4:
                        self._insert(x + dx, top + dy, z + dz, 'leaves')

    def snapshot(self):
        '''
        Returns everything a fresh mirror needs to reproduce this world: the
        generator parameters plus the edits made since generation.
        '''
        blocks = []
        removed = []
        for (x, y, z), t in sorted(self.edits.items()):
            if t is None:
                removed.append([x, y, z])
            else:
                blocks.append({'x': x, 'y': y, 'z': z, 'block_type': t})
        return {
            'seed': self.seed,
            'center': list(self.center) if self.center is not None else None,
            'extent': self.extent,
            'blocks': blocks,
            'removed': removed,
        }

    def load_snapshot(self, snapshot):
        '''
        Rebuilds this world from a `snapshot()`. No callbacks fire while
        loading; callers that mirror the world elsewhere should walk
        `voxels()` afterwards.
        '''
        on_add, on_remove = self.on_add, self.on_remove
        self.on_add = self.on_remove = None
        try:
            self.seed = snapshot['seed']
            self.reset()
            if snapshot.get('center') is not None:
                self.generate_terrain(snapshot['center'], snapshot['extent'])
            # every edited cell is cleared first so replaced blocks come out right
            for x, y, z in snapshot['removed']:
                self.remove_block(x, y, z)
            for b in snapshot['blocks']:
                self.remove_block(b['x'], b['y'], b['z'])
            for b in snapshot['blocks']:
                self.place_block(b['x'], b['y'], b['z'], b['block_type'])
        finally:
            self.on_add, self.on_remove = on_add, on_remove

    def voxels(self):
        for (x, y, z), t in self.blocks.items():
            yield Voxel(x, y, z, t)

    def hit_test(self, position, vector, max_distance=None):
        """ Line of sight search from current position. If a block is
        intersected it is returned, along with the block previously in the line
        of sight. If no block is found, return None, None.

        Water is see-through for interaction.

        Parameters
        ----------
        position : tuple of len 3
            The (x, y, z) position to check visibility from.
        vector : tuple of len 3
            The line of sight vector.
        max_distance : int
            How many blocks away to search for a hit.

        """
        if max_distance is None:
            max_distance = config.REACH_DISTANCE
        m = 8
        x, y, z = position
        dx, dy, dz = vector
        previous = None
        for _ in range(max_distance * m):
            key = normalize((x, y, z))
            if key != previous:
                t = self.blocks.get(key)
                if t is not None and t != WATER:
                    return key, previous
            previous = key
            x, y, z = x + dx / m, y + dy / m, z + dz / m
        return None, None
