"""Streaming completion providers.

A provider turns a chat message list into an async iterator of text deltas.
Opening the stream (``open_stream``) is separate from iterating it so callers
can report a failed request as a plain HTTP error before any bytes are sent.
"""

import logging
from typing import Any, AsyncIterator, Optional, Protocol

from ChatBackend.services.openai_compatible_client import get_async_openai_compatible_client

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    async def open_stream(self, messages: list[dict], *, max_tokens: int) -> AsyncIterator[str]:
        ...


class OpenAICompletionProvider:
    def __init__(self, provider: str, model: str):
        self.provider = provider
        self.model = model

    async def open_stream(self, messages: list[dict], *, max_tokens: int) -> AsyncIterator[str]:
        client = get_async_openai_compatible_client(self.provider)
        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
                max_completion_tokens=max_tokens,
            )
        except Exception:
            await _close_quietly(client)
            raise
        return _iter_text_deltas(client, stream)


# Yield text deltas and always close the upstream stream and its client
async def _iter_text_deltas(client: Any, stream: Any) -> AsyncIterator[str]:
    try:
        async for chunk in stream:
            try:
                choice = chunk.choices[0]
            except (AttributeError, IndexError):
                continue
            for piece in _extract_text_pieces(choice):
                yield piece
    finally:
        await _close_quietly(stream)
        await _close_quietly(client)


# Extract streamed text fragments from a chunk choice
def _extract_text_pieces(choice: Any) -> list[str]:
    pieces: list[str] = []

    delta = getattr(choice, "delta", None)
    if delta is not None:
        content = getattr(delta, "content", None)
        if isinstance(content, str) and content:
            pieces.append(content)

    # Some providers surface streaming text on choice.text
    text_piece = getattr(choice, "text", None)
    if isinstance(text_piece, str) and text_piece:
        pieces.append(text_piece)

    return pieces


async def _close_quietly(resource: Optional[Any]) -> None:
    if resource is None:
        return
    close = getattr(resource, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception:
        logger.debug("completion.close.error", exc_info=True)
