counter = 0


def next_player_number():
    global counter
    counter += 1
    return counter


class Player(object):
    '''
    Server-side record of one client connection.

    `avatar` stays None until the connection sends a valid join.
    '''
    def __init__(self, conn, address=None):
        self.conn = conn
        self.address = address
        self.number = next_player_number()
        self.id = f"player-{self.number}"
        self.name = None
        self.avatar = None
        self.comms_queue = []

    @property
    def joined(self):
        return self.avatar is not None

    @property
    def default_name(self):
        return f"Player{self.number}"

    def __repr__(self):
        return f"{self.id}({self.name})"

    def __str__(self):
        return self.name or self.id
