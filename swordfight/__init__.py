# swordfight/__init__.py
from .config import load_config
from .content.catalog import BundledCatalog
from .routes import swordfight_bp
from .sockets import register_relay_socket_handlers


def init_swordfight(app, socketio, config=None, catalog=None):
    config = config or load_config()
    app.extensions["swordfight"] = {
        "config": config,
        "catalog": catalog or BundledCatalog(),
    }
    app.register_blueprint(swordfight_bp)
    register_relay_socket_handlers(socketio, config)
