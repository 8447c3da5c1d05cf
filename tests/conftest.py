import os
import pickle
import sys
from collections import deque

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import config


class FakeConnection:
    '''
    One end of an in-memory stand-in for a multiprocessing Connection.
    Messages are pickled on the way through like the real thing.
    '''
    def __init__(self):
        self.inbox = deque()
        self.peer = None
        self.closed = False

    def send(self, obj):
        if self.closed:
            raise OSError("connection is closed")
        if self.peer is not None and not self.peer.closed:
            self.peer.inbox.append(pickle.loads(pickle.dumps(obj)))

    def poll(self, timeout=0.0):
        return bool(self.inbox) or (self.peer is not None and self.peer.closed)

    def recv(self):
        if self.inbox:
            return self.inbox.popleft()
        raise EOFError

    def close(self):
        self.closed = True

    def drain(self):
        messages = list(self.inbox)
        self.inbox.clear()
        return messages


class FakeListener:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def make_pipe():
    a, b = FakeConnection(), FakeConnection()
    a.peer, b.peer = b, a
    return a, b


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch):
    monkeypatch.setattr(config, "LOG_FILE_PATH", None)
    monkeypatch.setattr(config, "LOG_LEVEL", "WARN")
