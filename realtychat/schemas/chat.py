from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Literal, Optional

MessageKind = Literal["text", "image", "file", "voice"]

class StartChat(BaseModel):
    # Sin user_id se abre el chat con soporte
    user_id: Optional[str] = Field(None, description="Usuario con el que abrir la conversación")

class MessageCreate(BaseModel):
    body: str = Field("", max_length=5000)
    kind: MessageKind = "text"
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = Field(None, max_length=255)

class MessageEdit(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)

class AssignChat(BaseModel):
    assigned_to: Optional[str] = None

class ParticipantOut(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None

class ThreadOut(BaseModel):
    id: str
    participants: List[str]
    participants_info: List[ParticipantOut] = []
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    unread_count: Dict[str, int] = {}
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class MessageOut(BaseModel):
    id: str
    thread_id: str
    sender_id: str
    body: str = ""
    kind: MessageKind = "text"
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None
    read: bool = False
    read_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    edited: bool = False
    edited_at: Optional[datetime] = None
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime

class ReadOut(BaseModel):
    thread_id: str
    read_at: datetime
    unread_count: int = 0
