"""Shared fixtures: fake transports and a local recognition service."""

import asyncio
import json
from typing import Callable, Optional

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from speech_client.config import AudioConfig, ServiceConfig, SessionConfig, Settings
from speech_client.errors import ConnectError, SendError
from speech_client.protocol import Frame, MessageType

FINAL_MESSAGE = json.dumps(
    {
        "RecognitionStatus": "Success",
        "Phrases": [{"DisplayText": "hello world", "Confidence": 0.91}],
    }
)
PARTIAL_MESSAGE = json.dumps({"DisplayText": "hello"})


def split_frame(data: bytes) -> tuple[dict[str, str], bytes]:
    """Split wire bytes into header dict and payload."""
    head, _, payload = data.partition(b"\n\n")
    headers = {}
    for line in head.decode("utf-8").split("\n"):
        key, _, value = line.partition(":")
        headers[key] = value
    return headers, payload


class FakeCredentials:
    """Credential provider returning a fixed token."""

    def __init__(self, token: str = "test-token", error: Optional[Exception] = None):
        self.token = token
        self.error = error
        self.secrets: list[str] = []

    async def fetch_token(self, secret: str) -> str:
        self.secrets.append(secret)
        if self.error:
            raise self.error
        return self.token


class FakeTransport:
    """In-memory transport recording frames and replaying scripted replies.

    ``replies`` maps a message type to inbound messages delivered to the
    handler right after a frame of that type is sent.
    """

    def __init__(
        self,
        replies: Optional[dict[MessageType, list]] = None,
        connect_error: Optional[Exception] = None,
        send_error_on: Optional[MessageType] = None,
        on_send: Optional[Callable[[Frame], None]] = None,
        close_after_end: bool = False,
    ):
        self.replies = replies or {}
        self.connect_error = connect_error
        self.send_error_on = send_error_on
        self.on_send = on_send
        self.close_after_end = close_after_end
        self.frames: list[Frame] = []
        self.url: Optional[str] = None
        self.headers: Optional[dict[str, str]] = None
        self.close_calls = 0
        self.handler = None
        self._closed = asyncio.Event()

    @property
    def labels(self) -> list[str]:
        return [frame.message_type.value for frame in self.frames]

    def on_message(self, handler) -> None:
        self.handler = handler

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        if self.connect_error:
            raise self.connect_error
        self.url = url
        self.headers = headers

    async def send(self, frame: Frame) -> None:
        if self.close_calls:
            raise SendError("closed")
        if frame.message_type is self.send_error_on:
            raise SendError(f"write failed for {frame.message_type.value}")
        self.frames.append(frame)
        if self.on_send:
            self.on_send(frame)
        for message in self.replies.get(frame.message_type, []):
            self.handler(message)
        if self.close_after_end and frame.message_type is MessageType.AUDIO_END:
            self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        self.close_calls += 1
        self._closed.set()


class FakeRecognitionService:
    """Local WebSocket server speaking the recognition protocol.

    Records the handshake headers and every inbound frame. Sends
    ``partials`` after the audio start frame and ``final`` after the audio
    end frame.
    """

    def __init__(
        self,
        partials: tuple[str, ...] = (PARTIAL_MESSAGE,),
        final: Optional[str] = FINAL_MESSAGE,
        greeting: Optional[str] = None,
        close_after_end: bool = False,
    ):
        self.partials = partials
        self.final = final
        self.greeting = greeting
        self.close_after_end = close_after_end
        self.messages: list = []
        self.request_headers = None
        self.connections = 0
        self.url = ""
        self.host = ""
        self._server = None

    @property
    def labels(self) -> list[str]:
        return [self.message_type(message) for message in self.messages]

    @staticmethod
    def message_type(message) -> str:
        data = message.encode("utf-8") if isinstance(message, str) else message
        headers, _ = split_frame(data)
        return headers.get("X-LOBBY-MESSAGE-TYPE", "")

    async def handle_connection(self, websocket) -> None:
        self.connections += 1
        self.request_headers = websocket.request.headers
        try:
            if self.greeting:
                await websocket.send(self.greeting)
            async for message in websocket:
                self.messages.append(message)
                label = self.message_type(message)
                if label == MessageType.AUDIO_START.value:
                    for partial in self.partials:
                        await websocket.send(partial)
                elif label == MessageType.AUDIO_END.value:
                    if self.final is not None:
                        await websocket.send(self.final)
                    if self.close_after_end:
                        await websocket.close()
        except ConnectionClosed:
            pass

    async def start(self) -> None:
        self._server = await serve(self.handle_connection, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        self.host = f"127.0.0.1:{port}"
        self.url = f"ws://{self.host}"

    async def stop(self) -> None:
        self._server.close()
        await self._server.wait_closed()

    def settings(self, **session_overrides) -> Settings:
        """Client settings pointing both endpoints at this server."""
        session = dict(connect_timeout=2.0, reconnect_delay=0.0, final_timeout=2.0)
        session.update(session_overrides)
        return Settings(
            service=ServiceConfig(
                short_phrase_url=f"{self.url}/recognition",
                long_dictation_url=f"{self.url}/recognition/continuous",
                host=self.host,
            ),
            session=SessionConfig(**session),
        )


@pytest_asyncio.fixture
async def recognition_service():
    service = FakeRecognitionService()
    await service.start()
    yield service
    await service.stop()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fast timeouts and no reconnect delay."""
    return Settings(
        audio=AudioConfig(chunk_size=1024),
        session=SessionConfig(
            connect_attempts=3,
            reconnect_delay=0.0,
            ack_timeout=0.2,
            final_timeout=0.5,
        ),
    )


@pytest.fixture
def connect_error() -> ConnectError:
    return ConnectError("handshake rejected")
