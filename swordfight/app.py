# swordfight/app.py
import logging

from flask import Flask
from flask_socketio import SocketIO

from . import init_swordfight
from .config import load_config

logger = logging.getLogger(__name__)


def create_app(config=None):
    config = config or load_config()
    app = Flask(__name__)
    # origins outside the list are refused before the websocket upgrade;
    # always_connect lets a refused join still receive its room-full envelope
    socketio = SocketIO(
        app,
        cors_allowed_origins=list(config["allowed_origins"]),
        always_connect=True,
        async_mode="threading",
    )
    init_swordfight(app, socketio, config)
    return app, socketio


def main():
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, str(config["log_level"]).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app, socketio = create_app(config)
    logger.info("Relay listening on %s:%s", config["host"], config["port"])
    socketio.run(app, host=config["host"], port=config["port"], allow_unsafe_werkzeug=True)


if __name__ == "__main__":
    main()
