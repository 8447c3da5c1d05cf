#
# Lattice hash noise for terrain heights.
#
# Each integer lattice point (x & 255, z & 255) is hashed to a value in
# (-1, 1]. Sampling at a low frequency stretches each lattice cell across
# many blocks, which gives flat terraces; summing three frequencies gives
# hills with bumps on them.
#
import math

import numpy

import config

OCTAVES = (
    (0.01, 8),
    (0.05, 4),
    (0.1, 2),
)

MASK31 = 0x7fffffff


def _hash(n):
    nn = ((n << 13) ^ n) & 0xffffffff
    return (nn * (nn * nn * 15731 + 789221) + 1376312589) & MASK31


def hash_noise(x, z):
    X = int(math.floor(x)) & 255
    Z = int(math.floor(z)) & 255
    return 1.0 - _hash(X + Z * 57) / 1073741824.0


def terrain_height(x, z):
    """ Height of the surface block for column (x, z).

    Pure function of its inputs so that every copy of the world (server,
    clients, bots) agrees on it.
    """
    height = 0.0
    for freq, amp in OCTAVES:
        height += hash_noise(x * freq, z * freq) * amp
    return int(math.floor(height)) + config.BASE_HEIGHT


def hash_noise_array(x, z):
    # uint64 arithmetic wraps mod 2**64, which keeps the low 31 bits exact
    X = numpy.floor(x).astype(numpy.int64) & 255
    Z = numpy.floor(z).astype(numpy.int64) & 255
    n = (X + Z * 57).astype(numpy.uint64)
    nn = ((n << numpy.uint64(13)) ^ n) & numpy.uint64(0xffffffff)
    h = (nn * (nn * nn * numpy.uint64(15731) + numpy.uint64(789221)) + numpy.uint64(1376312589)) & numpy.uint64(MASK31)
    return 1.0 - h.astype(numpy.float64) / 1073741824.0


def terrain_heights(xs, zs):
    """ Vectorised `terrain_height` over matching arrays of x and z. """
    xs = numpy.asarray(xs, dtype=numpy.float64)
    zs = numpy.asarray(zs, dtype=numpy.float64)
    height = numpy.zeros(numpy.broadcast(xs, zs).shape, dtype=numpy.float64)
    for freq, amp in OCTAVES:
        height += hash_noise_array(xs * freq, zs * freq) * amp
    return numpy.floor(height).astype(numpy.int64) + config.BASE_HEIGHT


def should_place_tree(x, z):
    h = (int(x) * 374761393 + int(z) * 668265263) & 0xffffffff
    return h % 100 < config.TREE_CHANCE
