import socketio
from fastapi import FastAPI
from .manager import SocketManager, socket_manager


def create_socket_app(app: FastAPI, manager: SocketManager = socket_manager) -> socketio.ASGIApp:
    """Wrap the API in a Socket.IO ASGI app sharing the same server."""
    return socketio.ASGIApp(
        manager.sio,
        other_asgi_app=app,
        socketio_path="/socket.io",
    )
