from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

socketio = SocketIO(async_mode=None)

from tapdash.registry import registry  # noqa: E402
from tapdash.services.race.scheduler import race_controller  # noqa: E402


def _parse_origins(value):
    if not value or value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    allowed_origins = _parse_origins(flask_app.config.get('CORS_ORIGINS'))
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Rooms live in process memory; a new app starts with an empty registry
    registry.init_app(flask_app)
    race_controller.init_app(flask_app, socketio, registry)

    from tapdash.main import main
    flask_app.register_blueprint(main)

    from tapdash.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from tapdash.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config['SOCKETIO_NAMESPACE'])

    if flask_app.config.get('ROOM_SWEEPER_ENABLED') and not flask_app.config.get('TESTING'):
        registry.start_sweeper(socketio, namespace=flask_app.config['SOCKETIO_NAMESPACE'])

    return flask_app
