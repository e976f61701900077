from __future__ import annotations

import logging
from typing import Any

import httpx
from httpx_sse import connect_sse

from .config import ChatKitConfig
from .state import ConversationState

logger = logging.getLogger(__name__)

# connect_sse adds Accept: text/event-stream and Cache-Control: no-store.
CONVERSATION_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
}


def build_payload(text: str, thread_id: str | None = None) -> dict[str, Any]:
    """Build the request body; a known thread id continues that thread."""
    payload: dict[str, Any] = {
        "params": {
            "input": {
                "content": [{"type": "input_text", "text": text}],
                "quoted_text": "",
                "attachments": [],
                "inference_options": {},
            },
        },
    }
    if thread_id:
        payload["type"] = "threads.add_user_message"
        payload["params"]["thread_id"] = thread_id
    else:
        payload["type"] = "threads.create"
    return payload


def _extract_error_text(data: object) -> str | None:
    """Best-effort extraction of the API error message from a JSON body."""
    if not isinstance(data, dict):
        return None

    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    for item in (error, data.get("message"), data.get("detail")):
        if isinstance(item, str) and item.strip():
            return item.strip()
    return None


class ChatKitError(Exception):
    """Base error for ChatKit API communication."""
    pass


class AuthError(ChatKitError):
    """Authentication failed (401/403)."""
    pass


class ConversationError(ChatKitError):
    """The conversation request was rejected."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConversationClient:
    def __init__(self, config: ChatKitConfig) -> None:
        self.config = config
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create reusable HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
            logger.info("ChatKit client created for %s", self.config.base_url)
        return self._client

    def send_message(
        self,
        text: str,
        *,
        state: ConversationState | None = None,
        client_secret: str | None = None,
    ) -> ConversationState:
        """Send a user message and stream the reply into a conversation state.

        POST /v1/chatkit/conversation with ``Accept: text/event-stream``.
        Passing the state returned by a previous call continues its thread.

        Raises ChatKitError if no client secret is available.
        Raises ConnectionError if the API is unreachable or the stream breaks.
        Raises AuthError if 401/403.
        Raises ConversationError on any other non-2xx status or a reply that
        is not an event stream.
        Raises StreamDecodeError if the event stream is malformed.
        """
        secret = client_secret or self.config.client_secret
        if not secret:
            raise ChatKitError("No client secret available for conversation request")

        if state is None:
            state = ConversationState()
        payload = build_payload(text, thread_id=state.thread.id)
        headers = {**CONVERSATION_HEADERS, "Authorization": f"Bearer {secret}"}
        client = self._get_client()

        url = self.config.conversation_url
        logger.info("POST %s (%s)", url, payload["type"])
        try:
            with connect_sse(client, "POST", url, json=payload, headers=headers) as event_source:
                response = event_source.response
                logger.info("%d %s", response.status_code, response.reason_phrase)
                self._raise_for_status(response)
                self._check_event_stream(response)
                state.consume(response.iter_bytes())
        except httpx.ConnectError as exc:
            logger.warning("ChatKit connection failed: %s", exc)
            raise ConnectionError(f"Cannot reach ChatKit API at {self.config.base_url}: {exc}") from exc
        except httpx.TimeoutException as exc:
            logger.warning("ChatKit request timed out: %s", exc)
            raise ConnectionError(f"ChatKit request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            logger.warning("ChatKit request error: %s", exc)
            raise ConnectionError(f"ChatKit request error: {exc}") from exc

        logger.debug(
            "Conversation %s now has %d items", state.thread.id, len(state.thread.snapshot())
        )
        return state

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 300:
            return

        response.read()
        if response.status_code in (401, 403):
            logger.warning("ChatKit auth failed: HTTP %d", response.status_code)
            raise AuthError(f"Authentication failed: HTTP {response.status_code}")

        data: object = None
        try:
            data = response.json()
        except ValueError:
            data = None
        message = _extract_error_text(data) or f"Request failed with status {response.status_code}"
        logger.warning("Conversation request failed: %s", message)
        raise ConversationError(message, status_code=response.status_code)

    @staticmethod
    def _check_event_stream(response: httpx.Response) -> None:
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" not in content_type:
            response.read()
            logger.warning("Expected an event stream, got %r", content_type)
            raise ConversationError(
                f"Expected an event stream, got {content_type!r}",
                status_code=response.status_code,
            )

    def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            self._client.close()
            logger.info("ChatKit client closed")
