import random

import pyglet

import config
import logutil
from entities.bot import Bot

BOT_NAMES = [
    'BuilderBot', 'MinerMike', 'CraftyAI', 'BlockBuddy', 'DigiDwarf',
    'PixelPete', 'VoxelVic', 'ChunkChris', 'TerraTina', 'StoneSam',
    'WoodWanda', 'SandySue', 'GrassyGus', 'RockyRita', 'DirtDave',
]


def bot_name(i):
    name = BOT_NAMES[i % len(BOT_NAMES)]
    if i >= len(BOT_NAMES):
        name += f"_{i // len(BOT_NAMES)}"
    return f"[bot]{name}"


class BotManager(object):
    '''
    Owns the server's bots and ticks them on a pyglet clock.

    The server loop calls `pump()` every iteration; the clock decides whether
    a bot tick is due. A bot that raises during its update is logged and
    skipped for that tick but keeps its place in the world.
    '''
    def __init__(self, world, avatars, emit, seed=None, clock=None):
        self.world = world
        self.avatars = avatars
        self.emit = emit
        self.rng = random.Random(seed)
        self.clock = clock if clock is not None else pyglet.clock.Clock()
        self.bots = []
        self.running = False

    def __len__(self):
        return len(self.bots)

    def start(self, count=None):
        if count is None:
            count = config.BOT_COUNT
        if count <= 0:
            return
        logutil.log("BOTS", f"spawning {count} bots")
        for i in range(len(self.bots), len(self.bots) + count):
            bot = Bot(i, bot_name(i), self.world, self.avatars, self.emit,
                      rng=random.Random(self.rng.getrandbits(32)))
            self.bots.append(bot)
            bot.spawn()
        if not self.running:
            self.clock.schedule_interval(self.tick, config.BOT_TICK_INTERVAL)
            self.running = True

    def tick(self, dt):
        for bot in list(self.bots):
            try:
                bot.update(dt)
            except Exception:
                logutil.log_exception("BOTS", f"bot {bot.name} update failed")

    def pump(self):
        if self.running:
            self.clock.tick()

    def stop(self):
        if self.running:
            self.clock.unschedule(self.tick)
            self.running = False
        for bot in self.bots:
            bot.destroy()
        if self.bots:
            logutil.log("BOTS", f"stopped {len(self.bots)} bots")
        self.bots = []
