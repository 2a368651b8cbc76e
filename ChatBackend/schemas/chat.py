import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


# camelCase on the wire, snake_case in Python; input accepts both
class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Request body for register/login
class CredentialsIn(_ApiModel):
    model_config = ConfigDict(extra="ignore")
    username: str
    password: str


class UserOut(_ApiModel):
    id: int
    username: str


# Request body for character creation
class CharacterIn(_ApiModel):
    model_config = ConfigDict(extra="ignore")
    name: str = Field(max_length=50)
    description: str = Field(max_length=200)
    system_prompt: str = Field(default="", max_length=2000)
    greeting: Optional[str] = Field(default=None, max_length=500)
    avatar_color: str = "#3B82F6"

    @field_validator("name", "description")
    @classmethod
    def _required_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("system_prompt")
    @classmethod
    def _strip_prompt(cls, value: str) -> str:
        return value.strip()

    @field_validator("greeting")
    @classmethod
    def _blank_greeting_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value

    @field_validator("avatar_color")
    @classmethod
    def _hex_color(cls, value: str) -> str:
        if not _HEX_COLOR.match(value):
            raise ValueError("must be a #RRGGBB color")
        return value


class CharacterOut(_ApiModel):
    id: int
    user_id: Optional[int] = None
    name: str
    description: str
    system_prompt: str
    greeting: Optional[str] = None
    avatar_color: str
    created_at: datetime


# Request body for starting a conversation
class ConversationIn(_ApiModel):
    model_config = ConfigDict(extra="ignore")
    character_id: int


class ConversationOut(_ApiModel):
    id: int
    user_id: int
    character_id: int
    title: str
    last_message_at: datetime
    created_at: datetime


# Sidebar row: conversation plus its character
class ConversationListItem(ConversationOut):
    character: Optional[CharacterOut] = None


class MessageOut(_ApiModel):
    id: int
    conversation_id: int
    role: str
    content: str
    created_at: datetime


class ConversationDetail(ConversationOut):
    character: CharacterOut
    messages: List[MessageOut]


# Request body for sending a message
class SendMessageIn(_ApiModel):
    model_config = ConfigDict(extra="ignore")
    content: Optional[str] = None
