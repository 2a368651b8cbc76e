from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ChatBackend.auth import require_auth
from ChatBackend.database import get_db
from ChatBackend.schemas.chat import ConversationDetail, ConversationIn, ConversationListItem, ConversationOut, SendMessageIn
from ChatBackend.services.chat_service import ChatService


router = APIRouter(prefix="/api/conversations", tags=["chat"])


def _chat_service(request: Request, db: Session) -> ChatService:
    state = request.app.state
    return ChatService(
        db,
        settings=state.settings,
        session_factory=state.session_factory,
        provider=state.completion_provider,
    )


# Retrieves all conversations for a user, most recent first
@router.get("")
def list_conversations(request: Request, db: Session = Depends(get_db)) -> list[ConversationListItem]:
    user_id = require_auth(request, db)
    return _chat_service(request, db).list_conversations(user_id=user_id)


# Starts a conversation with a character, seeding its greeting
@router.post("", status_code=201)
def start_conversation(payload: ConversationIn, request: Request, db: Session = Depends(get_db)) -> ConversationOut:
    user_id = require_auth(request, db)
    return _chat_service(request, db).start_conversation(user_id=user_id, character_id=payload.character_id)


# Retrieves a conversation with its character and ordered messages
@router.get("/{conversation_id}")
def get_conversation(conversation_id: int, request: Request, db: Session = Depends(get_db)) -> ConversationDetail:
    user_id = require_auth(request, db)
    return _chat_service(request, db).get_conversation(user_id=user_id, conversation_id=conversation_id)


@router.delete("/{conversation_id}", status_code=204)
def delete_conversation(conversation_id: int, request: Request, db: Session = Depends(get_db)) -> Response:
    user_id = require_auth(request, db)
    _chat_service(request, db).delete_conversation(user_id=user_id, conversation_id=conversation_id)
    return Response(status_code=204)


# Sends a user message and streams the assistant reply as SSE
@router.post("/{conversation_id}/messages")
async def send_message(conversation_id: int, payload: SendMessageIn, request: Request, db: Session = Depends(get_db)):
    user_id = require_auth(request, db)
    return await _chat_service(request, db).send_message(
        user_id=user_id,
        conversation_id=conversation_id,
        content=payload.content,
    )
