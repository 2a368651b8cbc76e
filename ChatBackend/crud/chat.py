from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ChatBackend.errors import NotFound
from ChatBackend.models.chat_models import Conversation, Message


# The single ownership check for conversations (and, transitively, their messages)
def assert_owned_conversation(session: Session, user_id: int, conversation_id: int) -> Conversation:
    conv = session.query(Conversation).filter_by(id=conversation_id, user_id=user_id).first()
    if conv is None:
        raise NotFound("Conversation not found")
    return conv


# List a user's conversations, most recently active first
def list_conversations(session: Session, user_id: int) -> list[Conversation]:
    return (
        session.query(Conversation)
        .filter(Conversation.user_id == user_id)
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .all()
    )


# Create a new conversation with a character
def create_conversation(session: Session, user_id: int, character_id: int, title: str) -> Conversation:
    now = datetime.now(timezone.utc)
    conv = Conversation(
        user_id=user_id,
        character_id=character_id,
        title=title,
        created_at=now,
        last_message_at=now,
    )
    session.add(conv)
    session.flush()
    return conv


def delete_conversation(session: Session, user_id: int, conversation_id: int) -> None:
    conv = assert_owned_conversation(session, user_id, conversation_id)
    session.delete(conv)
    session.flush()


# Update the title of a conversation
def update_conversation_title(session: Session, user_id: int, conversation_id: int, title: str) -> Optional[Conversation]:
    conv = session.query(Conversation).filter_by(id=conversation_id, user_id=user_id).first()
    if not conv:
        return None
    conv.title = title
    session.flush()
    return conv


# Advance recency; called with every message append
def touch_conversation(session: Session, conversation: Conversation, at: Optional[datetime] = None) -> None:
    conversation.last_message_at = at or datetime.now(timezone.utc)


# Append a message and touch its conversation in the same flush
def append_message(session: Session, conversation: Conversation, role: str, content: str) -> Message:
    now = datetime.now(timezone.utc)
    msg = Message(conversation_id=conversation.id, role=role, content=content, created_at=now)
    session.add(msg)
    touch_conversation(session, conversation, now)
    session.flush()
    return msg


# Get the ordered message history of a conversation
def get_messages(session: Session, conversation_id: int) -> list[Message]:
    return (
        session.query(Message)
        .filter_by(conversation_id=conversation_id)
        .order_by(Message.created_at, Message.id)
        .all()
    )