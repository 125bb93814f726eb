"""Async HTTP client for the diagnostic chat API.

Submitting a turn asynchronously returns before the assistant has replied;
``wait_for_reply`` polls the history endpoint a bounded number of times
until a new assistant message shows up.
"""

import asyncio
import logging
import uuid
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_POLL_ATTEMPTS = 5
DEFAULT_POLL_INTERVAL = 2.0


class ChatClient:
    """Client for the chat endpoints.

    Example:
        async with ChatClient("http://localhost:8000", api_key="...") as client:
            reply = await client.send_and_wait(patient_id, session_id, "I feel dizzy")
            if reply is None:
                print("Still thinking, check back later")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        if http_client is not None:
            self._http = http_client
        else:
            self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"X-API-Key": api_key}

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._http.request(method, path, headers=self._headers, **kwargs)
        response.raise_for_status()
        return response

    async def submit_turn(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit a turn and wait for the full outcome."""
        response = await self._request("POST", "/api/chat/turns", json=payload)
        return response.json()

    async def submit_turn_async(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit a turn for background processing (202 Accepted)."""
        response = await self._request("POST", "/api/chat/turns/async", json=payload)
        return response.json()

    async def fetch_history(
        self,
        patient_id: uuid.UUID | str,
        session_id: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Chronological messages for a patient or one of their sessions."""
        params: dict[str, Any] = {"patient_id": str(patient_id), "limit": limit}
        if session_id is not None:
            params["session_id"] = session_id
        response = await self._request("GET", "/api/chat/history", params=params)
        return response.json()["messages"]

    async def wait_for_reply(
        self,
        patient_id: uuid.UUID | str,
        session_id: str,
        known_message_ids: set[str],
        max_attempts: int = DEFAULT_POLL_ATTEMPTS,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> dict[str, Any] | None:
        """Poll until an assistant message not in ``known_message_ids`` appears.

        Args:
            patient_id: Patient whose session is polled.
            session_id: Session the turn was submitted to.
            known_message_ids: Ids already seen before the turn was submitted.
            max_attempts: Number of history fetches before giving up.
            interval: Seconds to wait before each fetch.

        Returns:
            The new assistant message, or None if none arrived in time.
        """
        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(interval)
            messages = await self.fetch_history(patient_id, session_id)
            for message in reversed(messages):
                if message["role"] == "ai" and message["id"] not in known_message_ids:
                    logger.debug("Assistant reply found on attempt %d", attempt)
                    return message
            logger.debug("No assistant reply yet (attempt %d/%d)", attempt, max_attempts)

        logger.info(
            "No assistant reply for session %s after %d attempts", session_id, max_attempts
        )
        return None

    async def send_and_wait(
        self,
        patient_id: uuid.UUID | str,
        session_id: str,
        message: str,
        conversation_history: list[dict[str, str]] | None = None,
        max_attempts: int = DEFAULT_POLL_ATTEMPTS,
        interval: float = DEFAULT_POLL_INTERVAL,
        **extra: Any,
    ) -> dict[str, Any] | None:
        """Submit a turn asynchronously and poll for the assistant's reply."""
        known = {m["id"] for m in await self.fetch_history(patient_id, session_id)}
        payload = {
            "patient_id": str(patient_id),
            "session_id": session_id,
            "message": message,
            "conversation_history": conversation_history or [],
            **extra,
        }
        await self.submit_turn_async(payload)
        return await self.wait_for_reply(
            patient_id,
            session_id,
            known,
            max_attempts=max_attempts,
            interval=interval,
        )
