"""
Discrete-step movement integrator shared by every avatar that walks.

One call to `step` integrates gravity and input into velocity, moves the
avatar to a tentative position and clamps it back out of any solid voxel it
ended up overlapping. The clamp is a swept test on cell faces between the
previous and tentative positions, so an avatar that covers more than a block
in one step can pass through thin geometry.
"""
import math

import numpy as np

import config

EPS = 1e-6


class MovementIntent(object):
    '''
    Boolean movement flags from the input layer.
    '''
    def __init__(self, forward=False, backward=False, left=False, right=False, jump=False):
        self.forward = forward
        self.backward = backward
        self.left = left
        self.right = right
        self.jump = jump

    def any_direction(self):
        return self.forward or self.backward or self.left or self.right


def wish_direction(yaw, intent):
    """ Returns the unit (dx, dz) direction the avatar wants to walk in, or
    (0, 0) if no direction is held or the held keys cancel out.
    """
    if not intent.any_direction():
        return 0.0, 0.0
    fx, fz = -math.sin(yaw), -math.cos(yaw)
    rx, rz = math.cos(yaw), -math.sin(yaw)
    dx = dz = 0.0
    if intent.forward:
        dx += fx
        dz += fz
    if intent.backward:
        dx -= fx
        dz -= fz
    if intent.right:
        dx += rx
        dz += rz
    if intent.left:
        dx -= rx
        dz -= rz
    length = math.hypot(dx, dz)
    if length < 1e-9:
        return 0.0, 0.0
    return dx / length, dz / length


def aabb(pos, radius, height):
    return (pos[0] - radius, pos[0] + radius,
            pos[1], pos[1] + height,
            pos[2] - radius, pos[2] + radius)


def cell_range(lo, hi):
    return range(int(math.floor(lo)), int(math.floor(hi)) + 1)


def overlaps(b, cell):
    min_x, max_x, min_y, max_y, min_z, max_z = b
    bx, by, bz = cell
    return (max_x > bx + EPS and min_x < bx + 1 - EPS and
            max_y > by + EPS and min_y < by + 1 - EPS and
            max_z > bz + EPS and min_z < bz + 1 - EPS)


def resolve_collisions(world, prev, tentative, velocity, radius=None, height=None):
    """
    Clamps `tentative` out of the solid cells it overlaps.

    Y is resolved over every overlapping cell first (landing on a cell top or
    bumping a cell bottom, decided by which face the avatar crossed since
    `prev`), then X, then Z. Each clamp zeroes that component of `velocity`
    in place.

    Parameters
    ----------
    world : object with is_solid(x, y, z)
    prev : sequence of len 3
        Position (feet, centred in x and z) at the start of the step.
    tentative : sequence of len 3
        Position after integrating velocity.
    velocity : numpy array of len 3

    Returns
    -------
    position : numpy array of len 3
    grounded : bool
        True if the avatar landed on a cell this step.
    """
    if radius is None:
        radius = config.PLAYER_RADIUS
    if height is None:
        height = config.PLAYER_HEIGHT
    p = np.array(tentative, dtype=float)
    prev_b = aabb(prev, radius, height)
    grounded = False

    b = aabb(p, radius, height)
    cells = [
        (x, y, z)
        for x in cell_range(b[0], b[1])
        for y in cell_range(b[2], b[3])
        for z in cell_range(b[4], b[5])
        if world.is_solid(x, y, z)
    ]

    for cell in cells:
        b = aabb(p, radius, height)
        if not overlaps(b, cell):
            continue
        top = cell[1] + 1
        bottom = cell[1]
        if prev_b[2] >= top - EPS and b[2] < top:
            p[1] = top
            velocity[1] = 0.0
            grounded = True
        elif prev_b[3] <= bottom + EPS and b[3] > bottom:
            p[1] = bottom - height
            velocity[1] = 0.0

    for axis, lo_i, hi_i in ((0, 0, 1), (2, 4, 5)):
        for cell in cells:
            b = aabb(p, radius, height)
            if not overlaps(b, cell):
                continue
            near = cell[axis]
            far = cell[axis] + 1
            if prev_b[hi_i] <= near + EPS and b[hi_i] > near:
                p[axis] = near - radius
                velocity[axis] = 0.0
            elif prev_b[lo_i] >= far - EPS and b[lo_i] < far:
                p[axis] = far + radius
                velocity[axis] = 0.0

    return p, grounded


def step(avatar, world, dt, intent, speed=None):
    """
    Advances `avatar` by `dt` seconds.

    `avatar` needs numpy `position` and `velocity` arrays, a `rotation`
    whose first element is yaw, and an `on_ground` flag.
    """
    if speed is None:
        speed = config.WALKING_SPEED
    velocity = avatar.velocity

    velocity[1] += config.GRAVITY * dt

    dx, dz = wish_direction(avatar.rotation[0], intent)
    if dx or dz:
        velocity[0] = dx * speed
        velocity[2] = dz * speed
    else:
        velocity[0] *= config.FRICTION
        velocity[2] *= config.FRICTION

    if intent.jump and avatar.on_ground:
        velocity[1] = config.JUMP_SPEED
        avatar.on_ground = False

    prev = avatar.position.copy()
    tentative = prev + velocity * dt

    avatar.on_ground = False
    position, grounded = resolve_collisions(world, prev, tentative, velocity)
    avatar.position = position
    avatar.on_ground = grounded
    return avatar
