from fastapi import Request, WebSocket

from backend.admin.controller import AdminController
from backend.session.controller import SessionController


def get_session_controller(websocket: WebSocket) -> SessionController:
    return websocket.app.state.session_controller


def get_admin_controller(request: Request) -> AdminController:
    return request.app.state.admin_controller
