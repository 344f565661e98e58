from fastapi import APIRouter, Depends, HTTPException

from backend.dependencies import get_admin_controller
from backend.models.meeting_model import ActionItemUpdate, MeetingCreate, MeetingUpdate
from .controller import AdminController

router = APIRouter()


@router.get("/health")
def health(controller: AdminController = Depends(get_admin_controller)):
    return controller.health()


@router.post("/meetings")
async def create_meeting(payload: MeetingCreate, controller: AdminController = Depends(get_admin_controller)):
    return await controller.create_meeting(payload)


@router.get("/meetings/{meeting_id}")
async def get_meeting(meeting_id: str, controller: AdminController = Depends(get_admin_controller)):
    try:
        return await controller.get_meeting_detail(meeting_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Meeting not found") from exc


@router.patch("/meetings/{meeting_id}")
async def update_meeting(
    meeting_id: str,
    payload: MeetingUpdate,
    controller: AdminController = Depends(get_admin_controller),
):
    try:
        return await controller.update_meeting(meeting_id, payload)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Meeting not found") from exc


@router.get("/users/{user_id}/meetings")
async def list_user_meetings(user_id: str, controller: AdminController = Depends(get_admin_controller)):
    return await controller.list_user_meetings(user_id)


@router.get("/meetings/{meeting_id}/transcriptions")
async def list_transcriptions(meeting_id: str, controller: AdminController = Depends(get_admin_controller)):
    return await controller.list_transcriptions(meeting_id)


@router.get("/meetings/{meeting_id}/action-items")
async def list_action_items(meeting_id: str, controller: AdminController = Depends(get_admin_controller)):
    return await controller.list_action_items(meeting_id)


@router.patch("/action-items/{action_item_id}")
async def update_action_item(
    action_item_id: str,
    payload: ActionItemUpdate,
    controller: AdminController = Depends(get_admin_controller),
):
    try:
        return await controller.update_action_item(action_item_id, payload)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Action item not found") from exc


@router.get("/meetings/{meeting_id}/insights")
async def get_insights(meeting_id: str, controller: AdminController = Depends(get_admin_controller)):
    try:
        return await controller.get_insights(meeting_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Meeting insights not found") from exc


@router.get("/stats/connections")
def connection_stats(controller: AdminController = Depends(get_admin_controller)):
    return controller.connection_stats()
