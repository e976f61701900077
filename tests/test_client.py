from __future__ import annotations

import json

import httpx
import pytest

from chatkit_conversation.client import (
    AuthError,
    ChatKitError,
    ConversationClient,
    ConversationError,
    build_payload,
)
from chatkit_conversation.config import ChatKitConfig
from chatkit_conversation.state import ConversationState
from chatkit_conversation.stream import StreamDecodeError


def sse_body(events: list[dict]) -> bytes:
    return b"".join(f"data: {json.dumps(event)}\n\n".encode() for event in events)


TURN_EVENTS = [
    {"type": "thread.created", "thread": {"id": "cthr_123", "status": {"type": "active"}}},
    {
        "type": "thread.item.done",
        "item": {
            "id": "cti_user",
            "type": "user_message",
            "content": [{"type": "input_text", "text": "bonjour"}],
        },
    },
    {"type": "thread.item.added", "item": {"id": "cti_assistant", "type": "assistant_message", "content": []}},
    {
        "type": "thread.item.updated",
        "item_id": "cti_assistant",
        "update": {
            "type": "assistant_message.content_part.added",
            "content_index": 0,
            "content": {"type": "output_text", "text": ""},
        },
    },
    {
        "type": "thread.item.updated",
        "item_id": "cti_assistant",
        "update": {"type": "assistant_message.content_part.text_delta", "content_index": 0, "delta": "Bonjour !"},
    },
    {"type": "thread.updated", "thread": {"title": "Greeting"}},
]


def make_config(client_secret: str | None = "ek_test_secret") -> ChatKitConfig:
    return ChatKitConfig(host="https://chatkit.test", client_secret=client_secret)


def make_client(handler, config: ChatKitConfig | None = None) -> ConversationClient:
    config = config or make_config()
    client = ConversationClient(config)
    client._client = httpx.Client(
        base_url=config.base_url,
        transport=httpx.MockTransport(handler),
    )
    return client


def stream_handler(body: bytes, requests: list[httpx.Request] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(
            status_code=200,
            headers={"Content-Type": "text/event-stream"},
            content=body,
        )
    return handler


class TestBuildPayload:
    def test_new_thread(self):
        payload = build_payload("Hello, ChatKit!")
        assert payload["type"] == "threads.create"
        assert "thread_id" not in payload["params"]
        assert payload["params"]["input"] == {
            "content": [{"type": "input_text", "text": "Hello, ChatKit!"}],
            "quoted_text": "",
            "attachments": [],
            "inference_options": {},
        }

    def test_existing_thread(self):
        payload = build_payload("Again", thread_id="cthr_123")
        assert payload["type"] == "threads.add_user_message"
        assert payload["params"]["thread_id"] == "cthr_123"

    def test_payloads_do_not_share_content(self):
        build_payload("first")
        payload = build_payload("second")
        assert payload["params"]["input"]["content"] == [{"type": "input_text", "text": "second"}]


class TestSendMessage:
    def test_streams_reply_into_state(self):
        client = make_client(stream_handler(sse_body(TURN_EVENTS)))

        state = client.send_message("bonjour")

        assert isinstance(state, ConversationState)
        assert state.thread.id == "cthr_123"
        assert state.thread.title == "Greeting"
        assert [part.text for part in state.thread.items[0].content] == ["bonjour", "Bonjour !"]

    def test_sends_streaming_headers_and_payload(self):
        requests: list[httpx.Request] = []
        client = make_client(stream_handler(sse_body(TURN_EVENTS), requests))

        client.send_message("bonjour")

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/chatkit/conversation"
        assert request.headers["Authorization"] == "Bearer ek_test_secret"
        assert request.headers["Accept"] == "text/event-stream"
        assert request.headers["Cache-Control"] == "no-store"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert body["type"] == "threads.create"
        assert body["params"]["input"]["content"][0]["text"] == "bonjour"

    def test_explicit_client_secret_wins(self):
        requests: list[httpx.Request] = []
        client = make_client(stream_handler(sse_body([]), requests))

        client.send_message("hi", client_secret="ek_other")

        assert requests[0].headers["Authorization"] == "Bearer ek_other"

    def test_passing_state_continues_thread(self):
        requests: list[httpx.Request] = []
        client = make_client(stream_handler(sse_body(TURN_EVENTS), requests))

        state = client.send_message("bonjour")
        again = client.send_message("merci", state=state)

        assert again is state
        body = json.loads(requests[1].content)
        assert body["type"] == "threads.add_user_message"
        assert body["params"]["thread_id"] == "cthr_123"

    def test_missing_client_secret_raises(self):
        client = make_client(stream_handler(b""), make_config(client_secret=None))
        with pytest.raises(ChatKitError):
            client.send_message("hi")

    def test_auth_failure_raises_auth_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "bad secret"}})

        client = make_client(handler)
        with pytest.raises(AuthError):
            client.send_message("hi")

    def test_error_status_uses_server_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Thread not found"}})

        client = make_client(handler)
        with pytest.raises(ConversationError, match="Thread not found") as excinfo:
            client.send_message("hi")
        assert excinfo.value.status_code == 400

    def test_error_status_without_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        client = make_client(handler)
        with pytest.raises(ConversationError, match="status 502"):
            client.send_message("hi")

    def test_connect_error_raises_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = make_client(handler)
        with pytest.raises(ConnectionError):
            client.send_message("hi")

    def test_timeout_raises_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        client = make_client(handler)
        with pytest.raises(ConnectionError, match="timed out"):
            client.send_message("hi")

    def test_malformed_stream_raises_decode_error(self):
        body = sse_body(TURN_EVENTS[:1]) + b"data: {not json}\n\n"
        client = make_client(stream_handler(body))
        state = ConversationState()

        with pytest.raises(StreamDecodeError):
            client.send_message("hi", state=state)
        assert state.thread.id == "cthr_123"

    def test_non_event_stream_reply_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"type": "thread.created"})

        client = make_client(handler)
        state = ConversationState()
        with pytest.raises(ConversationError, match="event stream") as excinfo:
            client.send_message("hi", state=state)
        assert excinfo.value.status_code == 200
        assert state.thread.id is None

    def test_posts_to_configured_host(self):
        requests: list[httpx.Request] = []
        config = ChatKitConfig(host="http://localhost:8000/", client_secret="ek_local")
        client = make_client(stream_handler(sse_body([]), requests), config)

        client.send_message("hi")

        assert str(requests[0].url) == "http://localhost:8000/v1/chatkit/conversation"

    def test_truncated_stream_raises_decode_error(self):
        body = sse_body(TURN_EVENTS[:1]) + b'data: {"type": "thread.updated"'
        client = make_client(stream_handler(body))
        state = ConversationState()

        with pytest.raises(StreamDecodeError, match="unterminated"):
            client.send_message("hi", state=state)
        assert state.thread.id == "cthr_123"
        assert state.thread.id == "cthr_123"


class TestClose:
    def test_close_closes_http_client(self):
        client = make_client(stream_handler(b""))
        http_client = client._client
        client.close()
        assert http_client.is_closed

    def test_get_client_recreates_after_close(self):
        client = ConversationClient(make_config())
        first = client._get_client()
        client.close()
        second = client._get_client()
        assert first is not second
        assert str(second.base_url).startswith("https://chatkit.test")
        client.close()
