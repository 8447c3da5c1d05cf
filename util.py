import math


def normalize(position):
    """ Accepts `position` of arbitrary precision and returns the block
    containing that position.

    Parameters
    ----------
    position : tuple of len 3

    Returns
    -------
    block_position : tuple of ints of len 3

    """
    x, y, z = position
    return (int(math.floor(x)), int(math.floor(y)), int(math.floor(z)))


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


def sight_vector(yaw, pitch):
    """ Returns the unit line of sight vector for a (yaw, pitch) in radians.

    Yaw 0 looks down -z; positive yaw turns toward -x.
    """
    m = math.cos(pitch)
    dy = math.sin(pitch)
    dx = -math.sin(yaw) * m
    dz = -math.cos(yaw) * m
    return (dx, dy, dz)


def wrap_angle(angle):
    while angle > math.pi:
        angle -= math.pi * 2
    while angle < -math.pi:
        angle += math.pi * 2
    return angle
