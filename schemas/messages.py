from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class User(WireModel):
    id: str
    username: str
    room_id: str = Field(alias="roomId")
    joined_at: str = Field(alias="joinedAt")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# Inbound frames, one model per event name

class JoinRequest(WireModel):
    event: Literal["join-request"]
    # Untyped so that a missing or mistyped field reaches the join coordinator
    # and is acknowledged as a validation failure instead of a generic parse error.
    room_id: Any = Field(default=None, alias="roomId")
    username: Any = None
    ref: Any = None


class RoomFrame(WireModel):
    """A frame addressed to a room the sender is expected to be in."""

    room_id: str = Field(alias="roomId")

    @field_validator("room_id")
    @classmethod
    def strip_room_id(cls, value: str) -> str:
        # joins commit the stripped room id
        return value.strip()


class LeaveRoom(RoomFrame):
    event: Literal["leave-room"]


class CodeChange(RoomFrame):
    event: Literal["code-change"]
    code: Any = None
    cursor_pos: Any = Field(default=None, alias="cursorPos")
    file_path: Optional[str] = Field(default=None, alias="filePath")


class SendMessage(RoomFrame):
    event: Literal["send-message"]
    text: str


class CursorMove(RoomFrame):
    event: Literal["cursor-move"]
    x: float
    y: float


class FileOpen(RoomFrame):
    event: Literal["file-open"]
    file_path: str = Field(alias="filePath")


class FileContent(RoomFrame):
    event: Literal["file-content"]
    file_path: str = Field(alias="filePath")
    code: Any = None


class FileSave(RoomFrame):
    event: Literal["file-save"]
    file_path: str = Field(alias="filePath")


class DrawingUpdate(RoomFrame):
    event: Literal["drawing-update"]
    drawing_data: Any = Field(default=None, alias="drawingData")


class RequestDrawing(RoomFrame):
    event: Literal["request-drawing"]


class SyncDrawing(RoomFrame):
    event: Literal["sync-drawing"]
    connection_id: str = Field(alias="connectionId")
    drawing_data: Any = Field(default=None, alias="drawingData")


class Ping(WireModel):
    event: Literal["ping"]


class Pong(WireModel):
    event: Literal["pong"]


InboundMessage = Annotated[
    Union[
        JoinRequest,
        LeaveRoom,
        CodeChange,
        SendMessage,
        CursorMove,
        FileOpen,
        FileContent,
        FileSave,
        DrawingUpdate,
        RequestDrawing,
        SyncDrawing,
        Ping,
        Pong,
    ],
    Field(discriminator="event"),
]

inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(raw: str):
    """Parse one text frame into its tagged message model.

    Raises pydantic.ValidationError for bad JSON, unknown events and
    missing or mistyped fields.
    """
    return inbound_adapter.validate_json(raw)
