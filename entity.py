import numpy as np

import config


class Avatar:
    """
    Anything with a transform that gets broadcast to other players: a human
    client's player or a bot.

    The server keeps one of these per id and relays whatever transform the
    owner reports; it does not run physics on it.
    """
    def __init__(self, avatar_id, name, position=None, rotation=(0.0, 0.0), is_bot=False):
        self.id = avatar_id
        self.name = name
        self.is_bot = is_bot

        if position is None:
            position = config.SPAWN_POSITION
        self.position = np.array(position, dtype=float)
        self.velocity = np.array([0, 0, 0], dtype=float)
        self.rotation = np.array(rotation, dtype=float)  # (yaw, pitch)

        self.on_ground = False

    def __repr__(self):
        return f"Avatar({self.id!r}, {self.name!r})"

    @property
    def yaw(self):
        return float(self.rotation[0])

    @property
    def pitch(self):
        return float(self.rotation[1])

    def set_transform(self, position, rotation):
        self.position = np.array(position, dtype=float)
        self.rotation = np.array(rotation, dtype=float)

    def to_network_dict(self):
        """
        Creates a simple dictionary of this avatar's state to be sent to clients.
        """
        return {
            'id': self.id,
            'name': self.name,
            'position': [float(v) for v in self.position],
            'rotation': [float(v) for v in self.rotation],
            'is_bot': self.is_bot,
        }

    @classmethod
    def from_network_dict(cls, data):
        """
        Builds a local copy of a remote avatar from `to_network_dict` output.
        """
        return cls(
            data['id'],
            data.get('name', ''),
            position=data.get('position'),
            rotation=data.get('rotation', (0.0, 0.0)),
            is_bot=data.get('is_bot', False),
        )
