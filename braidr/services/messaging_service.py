import logging
from typing import List

from pydantic import TypeAdapter, ValidationError

from braidr.schemas.message import Message, MessageCreate, MessageType
from braidr.schemas.response import ApiResponse
from braidr.services.api_client import ApiClient

logger = logging.getLogger(__name__)

_messages = TypeAdapter(List[Message])

class MessagingService:
    def __init__(self, api: ApiClient):
        self.api = api

    async def get_messages(self, conversation_id: str) -> ApiResponse:
        """
        Get the messages of a conversation
        """
        response = await self.api.get_messages(conversation_id)
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to load messages")
        data = response.data or []
        if isinstance(data, dict):
            data = data.get("messages") or []
        try:
            return ApiResponse.ok(_messages.validate_python(data))
        except ValidationError as e:
            logger.error(f"Messages for conversation {conversation_id} were malformed: {e}")
            return ApiResponse.fail("Received an unexpected response from the server")

    async def send_message(
        self, conversation_id: str, content: str, type: MessageType = MessageType.TEXT
    ) -> ApiResponse:
        """
        Send a message to a conversation
        """
        try:
            message_in = MessageCreate(conversationId=conversation_id, content=content, type=type)
        except ValidationError as e:
            return ApiResponse.fail(f"Invalid message: {e.errors()[0].get('msg')}")
        if not message_in.content.strip():
            return ApiResponse.fail("Message cannot be empty")

        response = await self.api.send_message(message_in.model_dump(mode="json"))
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to send message")
        try:
            return ApiResponse.ok(Message.model_validate(response.data))
        except ValidationError as e:
            logger.error(f"Sent message response was malformed: {e}")
            return ApiResponse.fail("Received an unexpected response from the server")
