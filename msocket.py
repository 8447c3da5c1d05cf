import socket
import multiprocessing.connection

import config


def get_network_ip():
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
    s.connect(('<broadcast>', 0))
    return s.getsockname()[0]


class Listener(multiprocessing.connection.Listener):
    '''
    Listener for pickled (message, payload) connections that can sit in a
    select() list alongside its accepted connections.
    '''
    def __init__(self, ip, port, authkey=None):
        if authkey is None:
            authkey = config.AUTHKEY
        multiprocessing.connection.Listener.__init__(self, address=(ip, port), authkey=authkey)

    def fileno(self):
        return self._listener._socket.fileno()

    def accept_with_address(self):
        conn = self.accept()
        address = self.last_accepted
        if isinstance(address, tuple):
            address = address[0]
        return conn, address


def Client(ip, port, authkey=None):
    if authkey is None:
        authkey = config.AUTHKEY
    return multiprocessing.connection.Client(address=(ip, port), authkey=authkey)
