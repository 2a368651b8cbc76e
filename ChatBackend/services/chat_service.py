from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from ChatBackend.config import Settings
from ChatBackend.crud.characters import get_visible_character
from ChatBackend.crud.chat import (append_message, assert_owned_conversation, create_conversation, delete_conversation, get_messages, list_conversations)
from ChatBackend.errors import NotFound, UpstreamFailure, ValidationError
from ChatBackend.models.character_model import Character
from ChatBackend.models.chat_models import Conversation, Message
from ChatBackend.schemas.chat import CharacterOut, ConversationDetail, ConversationListItem, ConversationOut, MessageOut
from ChatBackend.services.chat_stream import build_chat_stream_response
from ChatBackend.services.completion import CompletionProvider

logger = logging.getLogger(__name__)


# System prompt for a character; blank prompts fall back to its name + description
def system_prompt_for(character: Character) -> str:
    prompt = (character.system_prompt or "").strip()
    if prompt:
        return prompt
    return f"You are {character.name}. {character.description}".strip()


# Prompt context: system entry first, then the transcript in stored order
def build_context(character: Character, history: list[Message], max_messages: int = 0) -> list[dict]:
    transcript = history[-max_messages:] if max_messages > 0 else history
    msgs: list[dict] = [{"role": "system", "content": system_prompt_for(character)}]
    for m in transcript:
        role = "assistant" if m.role == "assistant" else "user"
        msgs.append({"role": role, "content": m.content})
    return msgs


class ChatService:
    # Initializes the service with the request's DB session; streaming persists through `session_factory`.
    def __init__(
        self,
        db: Session,
        *,
        settings: Optional[Settings] = None,
        session_factory: Optional[sessionmaker] = None,
        provider: Optional[CompletionProvider] = None,
    ):
        self.db = db
        self.settings = settings or Settings()
        self.session_factory = session_factory
        self.provider = provider

    def list_conversations(self, *, user_id: int) -> list[ConversationListItem]:
        return [ConversationListItem.model_validate(c) for c in list_conversations(self.db, user_id)]

    def get_conversation(self, *, user_id: int, conversation_id: int) -> ConversationDetail:
        conv = assert_owned_conversation(self.db, user_id, conversation_id)
        return ConversationDetail(
            **ConversationOut.model_validate(conv).model_dump(),
            character=CharacterOut.model_validate(conv.character),
            messages=[MessageOut.model_validate(m) for m in get_messages(self.db, conv.id)],
        )

    # Starts a chat; the greeting insert is a second unit whose failure is non-fatal
    def start_conversation(self, *, user_id: int, character_id: int) -> ConversationOut:
        character = get_visible_character(self.db, user_id, character_id)
        if character is None:
            raise NotFound("Character not found")

        conv = create_conversation(self.db, user_id, character.id, f"Chat with {character.name}")
        self.db.commit()

        if character.greeting:
            try:
                append_message(self.db, conv, "assistant", character.greeting)
                self.db.commit()
            except Exception:
                logger.exception("chat.greeting.error: conv=%s", conv.id)
                self.db.rollback()

        self.db.refresh(conv)
        return ConversationOut.model_validate(conv)

    def delete_conversation(self, *, user_id: int, conversation_id: int) -> None:
        delete_conversation(self.db, user_id, conversation_id)
        self.db.commit()

    # Validates, persists the user turn, opens the provider stream, then delegates SSE relay
    async def send_message(self, *, user_id: int, conversation_id: int, content: Optional[str]):
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationError("Message content is required")

        conv: Conversation = assert_owned_conversation(self.db, user_id, conversation_id)

        # Durable before any model call; never rolled back afterwards
        append_message(self.db, conv, "user", text)
        self.db.commit()

        history = get_messages(self.db, conv.id)
        messages = build_context(conv.character, history, self.settings.context_max_messages)

        # Nothing is written to the client until the first delta arrived, so a
        # failure up to that point is still a plain JSON error
        deltas = None
        try:
            deltas = await self.provider.open_stream(messages, max_tokens=self.settings.max_completion_tokens)
            first_piece = await anext(deltas, None)
        except Exception:
            logger.exception("chat.provider.open.error: conv=%s", conv.id)
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                await aclose()
            raise UpstreamFailure("Failed to send message")

        return build_chat_stream_response(
            user_id=user_id,
            conversation_id=conv.id,
            deltas=deltas,
            session_factory=self.session_factory,
            history_count=len(history),
            first_piece=first_piece,
        )
