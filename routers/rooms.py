from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import RoomListResponse, RoomSummary, RoomDetailsResponse, RoomMember
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=RoomListResponse)
async def list_rooms(request: Request):
    """
    Read-only view of the room directory.

    Returns:
    - room_count: Number of rooms with at least one member
    - connection_count: Open transport sessions, joined or not
    - rooms: room_id and member_count per room
    """
    manager = request.app.state.manager
    directory = manager.directory
    rooms = [
        RoomSummary(room_id=room_id, member_count=len(directory.member_ids(room_id)))
        for room_id in sorted(directory.room_ids())
    ]
    logger.debug(f"Room list requested: {len(rooms)} rooms, {len(manager.connections)} connections")
    return RoomListResponse(
        room_count=len(rooms),
        connection_count=len(manager.connections),
        rooms=rooms,
    )


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    directory = request.app.state.manager.directory
    if room_id not in directory:
        logger.info(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    members = [
        RoomMember(connection_id=user.id, username=user.username, joined_at=user.joined_at)
        for user in directory.users(room_id)
    ]
    logger.info(f"Room details retrieved for {room_id}: {len(members)} members")
    return RoomDetailsResponse(room_id=room_id, member_count=len(members), members=members)
