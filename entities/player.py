import numpy as np

import config
import physics
from entity import Avatar
from util import clamp, normalize, sight_vector, wrap_angle


class LocalPlayer(Avatar):
    """
    The avatar driven by this client's input.

    Runs the full physics step locally; the server only ever sees the
    resulting transform.
    """
    def __init__(self, avatar_id, name, position=None):
        """
        Args:
            avatar_id (str): id assigned by the server in `init`.
            name (str): display name.
            position (tuple): initial feet position, defaults to the spawn point.
        """
        super().__init__(avatar_id, name, position=position)
        self.intent = physics.MovementIntent()

    def set_movement(self, forward=None, backward=None, left=None, right=None):
        for flag, value in (('forward', forward), ('backward', backward),
                            ('left', left), ('right', right)):
            if value is not None:
                setattr(self.intent, flag, bool(value))

    def jump(self):
        self.intent.jump = True

    def stop_jump(self):
        self.intent.jump = False

    def rotate(self, dx, dy):
        """
        Turns the view by a mouse delta in pixels.
        """
        yaw = self.rotation[0] - dx * config.MOUSE_SENSITIVITY
        pitch = self.rotation[1] - dy * config.MOUSE_SENSITIVITY
        self.rotation[0] = wrap_angle(yaw)
        self.rotation[1] = clamp(pitch, -config.MAX_PITCH, config.MAX_PITCH)

    def update(self, dt, world):
        physics.step(self, world, dt, self.intent)

    def get_eye_position(self):
        return self.position + np.array([0.0, config.PLAYER_HEIGHT * 0.9, 0.0])

    def get_sight_vector(self):
        return sight_vector(self.rotation[0], self.rotation[1])

    def target_block(self, world):
        """
        Returns (block, previous) for whatever the player is looking at,
        as `World.hit_test` does.
        """
        return world.hit_test(tuple(self.get_eye_position()), self.get_sight_vector())

    def break_target(self, world):
        block, _ = self.target_block(world)
        return block

    def occupied_cells(self):
        # a box that only touches a cell face does not occupy that cell
        b = physics.aabb(self.position, config.PLAYER_RADIUS, config.PLAYER_HEIGHT)
        cells = set()
        for cx in physics.cell_range(b[0], b[1]):
            for cy in physics.cell_range(b[2], b[3]):
                for cz in physics.cell_range(b[4], b[5]):
                    if physics.overlaps(b, (cx, cy, cz)):
                        cells.add((cx, cy, cz))
        return cells

    def place_target(self, world):
        """
        Returns the cell a new block would go into: the empty cell in front
        of the targeted face. None when nothing is targeted, the cell is
        taken or the player is standing in it.
        """
        block, previous = self.target_block(world)
        if block is None or previous is None:
            return None
        if world.is_solid(*previous):
            return None
        if normalize(previous) in self.occupied_cells():
            return None
        return previous
