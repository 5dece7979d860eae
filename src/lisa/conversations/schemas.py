"""
Pydantic schemas for inbound conversation payloads.

Chat clients send messages in two shapes: the front end uses
``trainPart``/``assistantType`` while stored transcripts use
``train_part_data``/``assistant_type``. Both are accepted.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field

from .entities import Message, MessageRole

MAX_MESSAGE_LENGTH = 100000
MAX_ASSISTANT_TYPE_LENGTH = 20


class MessagePayload(BaseModel):
    """A message as submitted by a chat client."""

    role: MessageRole
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)
    attachment: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("trainPart", "train_part_data", "attachment"),
    )
    assistant_type: Optional[str] = Field(
        default=None,
        max_length=MAX_ASSISTANT_TYPE_LENGTH,
        validation_alias=AliasChoices("assistantType", "assistant_type"),
    )

    class Config:
        extra = "ignore"
        json_schema_extra = {
            "example": {
                "role": "assistant",
                "content": "The brake caliper part number is 4471-220.",
                "trainPart": {"name": "Brake caliper", "image": "caliper.png"},
                "assistantType": "schematic",
            }
        }

    def to_message(self, position: int) -> Message:
        return Message(
            role=self.role,
            content=self.content,
            attachment=self.attachment,
            assistant_type=self.assistant_type or None,
            position=position,
        )
