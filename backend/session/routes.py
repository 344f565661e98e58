from fastapi import APIRouter, Depends, WebSocket

from backend.dependencies import get_session_controller
from .controller import SessionController

router = APIRouter()


@router.websocket("/ws")
async def meeting_socket(websocket: WebSocket, controller: SessionController = Depends(get_session_controller)):
    await controller.serve(websocket)
