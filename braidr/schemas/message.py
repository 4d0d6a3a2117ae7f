from pydantic import BaseModel
from typing import Optional
from enum import Enum

class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"

class MessageCreate(BaseModel):
    conversationId: str
    content: str
    type: MessageType = MessageType.TEXT

class Message(BaseModel):
    id: str
    conversationId: Optional[str] = None
    senderId: str
    receiverId: Optional[str] = None
    appointmentId: Optional[str] = None
    content: str
    type: MessageType = MessageType.TEXT
    isRead: bool = False
    createdAt: Optional[str] = None
