from pydantic import BaseModel


class RoomSummary(BaseModel):
    room_id: str
    member_count: int

class RoomListResponse(BaseModel):
    room_count: int
    connection_count: int
    rooms: list[RoomSummary]

class RoomMember(BaseModel):
    connection_id: str
    username: str
    joined_at: str

class RoomDetailsResponse(BaseModel):
    room_id: str
    member_count: int
    members: list[RoomMember]
