import json
import logging
import time
from typing import AsyncIterator, Optional

from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from ChatBackend.crud.chat import append_message, assert_owned_conversation, update_conversation_title

logger = logging.getLogger(__name__)

TITLE_SOURCE_CHARS = 50
TITLE_MAX_CHARS = 40
TITLE_ELLIPSIS = "..."
# Auto-title only while the conversation holds the seed greeting and the first user turn
AUTO_TITLE_MAX_HISTORY = 2
STREAM_ERROR_MESSAGE = "Failed to generate response"


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


# Title from the first line of the reply, cut to 40 chars + "..."; None when blank
def derive_title(reply: str) -> Optional[str]:
    first_line = reply[:TITLE_SOURCE_CHARS].split("\n")[0].strip()
    if len(first_line) > TITLE_MAX_CHARS:
        first_line = first_line[:TITLE_MAX_CHARS].rstrip() + TITLE_ELLIPSIS
    return first_line or None


def should_auto_title(history_count: int) -> bool:
    return history_count <= AUTO_TITLE_MAX_HISTORY


# Persist the assistant turn (+ touch, + optional title) in its own session
def _finalize_reply(
    session_factory: sessionmaker,
    *,
    user_id: int,
    conversation_id: int,
    reply: str,
    history_count: int,
) -> Optional[str]:
    session: Session = session_factory()
    try:
        conv = assert_owned_conversation(session, user_id, conversation_id)
        append_message(session, conv, "assistant", reply)
        title = derive_title(reply) if should_auto_title(history_count) else None
        if title:
            update_conversation_title(session, user_id, conversation_id, title)
        session.commit()
        return title
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


async def relay_chat_stream(
    *,
    user_id: int,
    conversation_id: int,
    deltas: AsyncIterator[str],
    session_factory: sessionmaker,
    history_count: int,
    first_piece: Optional[str] = None,
) -> AsyncIterator[str]:
    """Relay provider deltas as SSE lines, then persist the full reply.

    Yields ``{"content": delta}`` per delta (``first_piece``, when the caller
    already pulled it, goes out first) and a final ``{"done": true}``.
    Any failure after the stream was opened ends with ``{"error": ...}`` and
    nothing is persisted for the assistant turn. If the consumer stops early
    (client disconnect) the upstream stream is closed and nothing is persisted.
    """
    full_response = ""
    t0_stream = time.perf_counter()

    try:
        if first_piece is not None:
            full_response += first_piece
            yield sse_event({"content": first_piece})
        async for piece in deltas:
            full_response += piece
            yield sse_event({"content": piece})
    except Exception:
        logger.exception("chat.stream.error: conv=%s", conversation_id)
        yield sse_event({"error": STREAM_ERROR_MESSAGE})
        return
    finally:
        aclose = getattr(deltas, "aclose", None)
        if aclose is not None:
            await aclose()

    logger.info(
        "chat.stream.done: conv=%s chars=%d ms=%d",
        conversation_id,
        len(full_response),
        int((time.perf_counter() - t0_stream) * 1000),
    )

    try:
        title = _finalize_reply(
            session_factory,
            user_id=user_id,
            conversation_id=conversation_id,
            reply=full_response,
            history_count=history_count,
        )
    except Exception:
        logger.exception("chat.stream.persist.error: conv=%s", conversation_id)
        yield sse_event({"error": STREAM_ERROR_MESSAGE})
        return

    if title:
        logger.info("chat.title.set: conv=%s", conversation_id)
    yield sse_event({"done": True})


# Streams assistant tokens over SSE and persists the reply once complete
def build_chat_stream_response(
    *,
    user_id: int,
    conversation_id: int,
    deltas: AsyncIterator[str],
    session_factory: sessionmaker,
    history_count: int,
    first_piece: Optional[str] = None,
) -> StreamingResponse:
    return StreamingResponse(
        relay_chat_stream(
            user_id=user_id,
            conversation_id=conversation_id,
            deltas=deltas,
            session_factory=session_factory,
            history_count=history_count,
            first_piece=first_piece,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
