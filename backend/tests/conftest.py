import os
import sys
import pytest

# Ensure the backend root (containing the `tapdash` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from tapdash import create_app, race_controller, registry, socketio


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    BASE_URL = 'http://race.test'
    SOCKETIO_NAMESPACE = '/'
    # Timers are queued on the room and fired by hand
    RACE_TIMERS_ENABLED = False
    ROOM_SWEEPER_ENABLED = False


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def connect(flask_app):
    """Factory for Socket.IO test clients; returns (client, sid)."""
    clients = []

    def _connect():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
        received = test_client.get_received()
        sid = next(pkt['args'][0]['sid'] for pkt in received if pkt['name'] == 'connected')
        clients.append(test_client)
        return test_client, sid

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected():
                test_client.disconnect()
        except Exception:
            pass


@pytest.fixture()
def host(connect):
    """A connected main display that has created a room."""
    test_client, sid = connect()
    ack = test_client.emit('create_room', callback=True)
    test_client.get_received()
    return test_client, sid, ack['room_code']


def payloads(received, name):
    """Payloads of the packets called ``name`` in a get_received() list."""
    return [pkt['args'][0] if pkt['args'] else None
            for pkt in received if pkt['name'] == name]


def join(connect, code, name, **extra):
    test_client, sid = connect()
    ack = test_client.emit('join_room', dict(room_code=code, display_name=name, **extra), callback=True)
    return test_client, sid, ack


def fire(room, name):
    """Run the queued timer ``name`` of ``room``."""
    return race_controller.fire(room.timers[name])


def room_for(code):
    return registry.get(code)
