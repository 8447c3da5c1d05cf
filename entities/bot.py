from __future__ import annotations

import math
import random
from typing import Callable, Dict, List, Optional, Tuple

import config
import protocol
from blocks import BOT_MATERIALS, WATER
from entity import Avatar
from util import clamp

PlanBlock = Tuple[int, int, int, str]

WANDER = 'wander'
BUILD = 'build'
BREAK = 'break'
IDLE = 'idle'

# (state, cumulative probability, min duration, max duration)
STATE_TABLE = (
    (WANDER, 0.50, 5.0, 15.0),
    (BUILD, 0.75, 8.0, 18.0),
    (BREAK, 0.90, 3.0, 8.0),
    (IDLE, 1.00, 2.0, 6.0),
)


def pillar_plan(rng: random.Random, bx: int, by: int, bz: int) -> List[PlanBlock]:
    block_type = rng.choice(BOT_MATERIALS[:3])
    h = rng.randint(3, 5)
    return [(bx, by + y, bz, block_type) for y in range(h)]


def wall_plan(rng: random.Random, bx: int, by: int, bz: int) -> List[PlanBlock]:
    block_type = rng.choice(BOT_MATERIALS[:4])
    length = rng.randint(3, 6)
    h = rng.randint(2, 3)
    return [(bx + i, by + y, bz, block_type) for i in range(length) for y in range(h)]


def hut_plan(rng: random.Random, bx: int, by: int, bz: int) -> List[PlanBlock]:
    """Hollow 3x3 walls, 3 high, with a 2 high door in the middle of the front."""
    blocks = []
    for y in range(3):
        for i in range(3):
            for j in range(3):
                if i == 1 and j == 1:
                    continue
                if i == 1 and j == 0 and y < 2:
                    continue
                blocks.append((bx + i, by + y, bz + j, 'wood'))
    return blocks


STRUCTURES = (pillar_plan, wall_plan, hut_plan)


def facing(dx: float, dz: float) -> float:
    """Yaw that looks along (dx, dz)."""
    return math.atan2(-dx, -dz)


class Bot:
    """
    A simulated player. Runs a small state machine (wander / build / break /
    idle) and drives the same world and broadcast paths a human client
    does, so other players can't tell it apart from a person.

    Bots don't use the full physics step: they never jump, so every tick
    they just walk on the XZ plane and settle onto the ground height.
    """
    def __init__(self, index: int, name: str, world, avatars: Dict[str, Avatar],
                 emit: Callable, rng: Optional[random.Random] = None):
        self.rng = rng if rng is not None else random.Random()
        self.id = f"bot-{index}"
        self.name = name
        self.world = world
        self.avatars = avatars
        self.emit = emit
        self.speed = config.BOT_SPEED

        position = (self.rng.random() * 30 - 15, 20.0, self.rng.random() * 30 - 15)
        rotation = (self.rng.random() * math.pi * 2, 0.0)
        self.avatar = Avatar(self.id, name, position=position, rotation=rotation, is_bot=True)

        self.state = WANDER
        self.state_timer = 0.0
        self.target_pos = None
        self.build_plan: Optional[List[PlanBlock]] = None
        self.build_index = 0
        self.action_cooldown = 0.0

    def __repr__(self):
        return f"Bot({self.id!r}, {self.name!r}, {self.state})"

    @property
    def position(self):
        return self.avatar.position

    def spawn(self):
        self.avatars[self.id] = self.avatar
        self.emit(protocol.PLAYER_JOINED, self.avatar.to_network_dict())

    def destroy(self):
        self.avatars.pop(self.id, None)
        self.emit(protocol.PLAYER_LEFT, self.id)

    def face(self, x, z):
        dx = x - self.position[0]
        dz = z - self.position[2]
        if dx or dz:
            self.avatar.rotation[0] = facing(dx, dz)

    def choose_new_target(self):
        # Pick a random nearby position inside the world bounds, avoiding
        # water and low ground
        bound = config.WORLD_BOUNDS
        for _ in range(10):
            angle = self.rng.random() * math.pi * 2
            dist = 5 + self.rng.random() * 15
            tx = self.position[0] + math.cos(angle) * dist
            tz = self.position[2] + math.sin(angle) * dist
            if abs(tx) > bound or abs(tz) > bound:
                continue
            ty = self.world.get_ground_height(tx, tz)
            if self.world.is_water(tx, ty, tz) or self.world.is_water(tx, ty - 1, tz) or ty <= 3:
                continue
            self.target_pos = (tx, ty, tz)
            self.face(tx, tz)
            return
        self.target_pos = None

    def choose_state(self):
        r = self.rng.random()
        for state, cutoff, lo, hi in STATE_TABLE:
            if r < cutoff:
                break
        self.state = state
        self.state_timer = self.rng.uniform(lo, hi)
        if state == WANDER:
            self.choose_new_target()
        elif state == BUILD:
            self.start_building()

    def start_building(self):
        bx = math.floor(self.position[0]) + self.rng.randrange(6) - 3
        bz = math.floor(self.position[2]) + self.rng.randrange(6) - 3
        by = self.world.get_ground_height(bx, bz)
        plan = self.rng.choice(STRUCTURES)
        self.build_plan = plan(self.rng, bx, by, bz)
        self.build_index = 0

    def update(self, dt):
        self.state_timer -= dt
        self.action_cooldown -= dt

        if self.state_timer <= 0:
            self.choose_state()

        if self.state == WANDER:
            self.update_wander(dt)
        elif self.state == BUILD:
            self.update_build(dt)
        elif self.state == BREAK:
            self.update_break(dt)
        elif self.state == IDLE:
            self.avatar.rotation[0] += dt * config.BOT_IDLE_TURN_RATE

        ground = self.world.get_ground_height(self.position[0], self.position[2])
        if self.position[1] > ground + 0.1:
            self.position[1] = max(ground, self.position[1] - config.BOT_FALL_SPEED * dt)
        else:
            self.position[1] = ground

        bound = config.WORLD_BOUNDS
        self.position[0] = clamp(self.position[0], -bound, bound)
        self.position[2] = clamp(self.position[2], -bound, bound)

        self.emit(protocol.PLAYER_MOVED, {
            'id': self.id,
            'position': [float(v) for v in self.position],
            'rotation': [float(v) for v in self.avatar.rotation],
        })

    def update_wander(self, dt):
        if self.target_pos is None:
            self.choose_new_target()
            return
        dx = self.target_pos[0] - self.position[0]
        dz = self.target_pos[2] - self.position[2]
        dist = math.hypot(dx, dz)
        if dist < 1:
            self.choose_new_target()
            return
        ux, uz = dx / dist, dz / dist
        self.position[0] += ux * self.speed * dt
        self.position[2] += uz * self.speed * dt
        self.avatar.rotation[0] = facing(dx, dz)

        # turn around before walking into water
        ahead_x = self.position[0] + ux * 2
        ahead_z = self.position[2] + uz * 2
        ahead_y = self.world.get_ground_height(ahead_x, ahead_z)
        if self.world.is_water(ahead_x, ahead_y, ahead_z):
            self.choose_new_target()

    def update_build(self, dt):
        if not self.build_plan or self.build_index >= len(self.build_plan):
            self.state = WANDER
            self.state_timer = 5.0
            self.build_plan = None
            self.choose_new_target()
            return
        if self.action_cooldown > 0:
            return
        x, y, z, block_type = self.build_plan[self.build_index]
        self.world.place_block(x, y, z, block_type)
        self.build_index += 1
        self.action_cooldown = self.rng.uniform(0.3, 0.6)
        self.face(x, z)

    def update_break(self, dt):
        if self.action_cooldown > 0:
            return
        px = math.floor(self.position[0])
        py = math.floor(self.position[1])
        pz = math.floor(self.position[2])
        for _ in range(5):
            bx = px + self.rng.randrange(5) - 2
            by = py + self.rng.randrange(3) - 1
            bz = pz + self.rng.randrange(5) - 2
            if by <= config.FLOOR_PROTECT_Y:
                continue
            voxel = self.world.get_block(bx, by, bz)
            if voxel is None or voxel.type == WATER:
                continue
            if self.world.break_block(bx, by, bz):
                self.action_cooldown = self.rng.uniform(0.5, 1.0)
                self.face(bx, bz)
                return
        self.action_cooldown = 1.0
