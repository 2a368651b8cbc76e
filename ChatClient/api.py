from typing import Any, AsyncIterator, Optional

import httpx

from ChatClient.sse import iter_sse_events


class ApiError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return response.reason_phrase


async def _raise_if_not_ok(response: httpx.Response) -> None:
    if response.is_success:
        return
    await response.aread()
    raise ApiError(response.status_code, _detail(response))


# Thin async client for the Persona Chat HTTP API; the cookie jar carries the session
class ChatApiClient:
    def __init__(self, base_url: str = "http://127.0.0.1:8000", *, client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, json: Any = None) -> Any:
        response = await self._client.request(method, url, json=json)
        await _raise_if_not_ok(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def register(self, username: str, password: str) -> dict:
        return await self._request("POST", "/api/auth/register", {"username": username, "password": password})

    async def login(self, username: str, password: str) -> dict:
        return await self._request("POST", "/api/auth/login", {"username": username, "password": password})

    async def logout(self) -> None:
        await self._request("POST", "/api/auth/logout")

    async def me(self) -> dict:
        return await self._request("GET", "/api/auth/me")

    async def list_characters(self) -> list[dict]:
        return await self._request("GET", "/api/characters")

    async def create_character(self, **fields: Any) -> dict:
        return await self._request("POST", "/api/characters", fields)

    async def delete_character(self, character_id: int) -> None:
        await self._request("DELETE", f"/api/characters/{character_id}")

    async def list_conversations(self) -> list[dict]:
        return await self._request("GET", "/api/conversations")

    async def create_conversation(self, character_id: int) -> dict:
        return await self._request("POST", "/api/conversations", {"characterId": character_id})

    async def get_conversation(self, conversation_id: int) -> dict:
        return await self._request("GET", f"/api/conversations/{conversation_id}")

    async def delete_conversation(self, conversation_id: int) -> None:
        await self._request("DELETE", f"/api/conversations/{conversation_id}")

    # Sends a message and yields decoded SSE events as they arrive
    async def stream_message(self, conversation_id: int, content: str) -> AsyncIterator[dict]:
        async with self._client.stream(
            "POST",
            f"/api/conversations/{conversation_id}/messages",
            json={"content": content},
            headers={"Accept": "text/event-stream"},
        ) as response:
            await _raise_if_not_ok(response)
            async for event in iter_sse_events(response.aiter_bytes()):
                yield event
