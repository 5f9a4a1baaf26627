"""WebSocket transport for the recognition service."""

import asyncio
import logging
from typing import Callable, Optional, Union
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .config import ServiceConfig, SessionConfig, settings
from .errors import ConnectError, SendError
from .protocol import Frame

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Union[str, bytes]], None]


def build_handshake_headers(
    token: str, locale: str, service: Optional[ServiceConfig] = None
) -> dict[str, str]:
    """Headers required by the service on the WebSocket upgrade request."""
    service = service or settings.service
    return {
        "X-CU-LogLevel": service.log_level,
        "X-CU-Locale": locale,
        "Authorization": f"Bearer {token}",
        "User-Agent": service.user_agent,
        "Host": service.host,
    }


class StreamingTransport:
    """Owns one duplex WebSocket connection.

    Outbound frames are sent in call order. Inbound messages are read by a
    background task and handed to the registered handler one at a time, in
    arrival order, concurrently with sending.
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or settings.session
        self.websocket = None
        self._handler: Optional[MessageHandler] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._close_started = False

    @property
    def is_open(self) -> bool:
        return self.websocket is not None and not self._close_started

    def on_message(self, handler: MessageHandler) -> None:
        """Register the callback invoked once per inbound message."""
        self._handler = handler

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        """Open the connection and start delivering inbound messages.

        Raises:
            ConnectError: On DNS, TLS, handshake or timeout failure.
        """
        if self.websocket is not None:
            raise ConnectError("Transport is already connected")

        headers = dict(headers)
        user_agent = headers.pop("User-Agent", None)
        host = headers.pop("Host", None)
        # websockets derives the Host header from the URL
        if host and host != urlsplit(url).netloc:
            logger.warning(f"Host header {host!r} differs from endpoint {url}; using endpoint host")

        try:
            self.websocket = await asyncio.wait_for(
                websockets.connect(
                    url,
                    additional_headers=headers,
                    user_agent_header=user_agent,
                    max_size=self.config.max_message_size,
                    open_timeout=None,
                ),
                timeout=self.config.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(f"Connection timeout after {self.config.connect_timeout}s") from e
        except (InvalidHandshake, InvalidURI, OSError) as e:
            raise ConnectError(f"Failed to connect to {url}: {e}") from e

        logger.info(f"Connected to {url}")
        self._reader_task = asyncio.create_task(self._read_messages())

    async def send(self, frame: Frame) -> None:
        """Send one frame.

        Audio frames go out as binary messages; the context and end frames,
        which carry no audio, go out as text.

        Raises:
            SendError: If the connection is not open or the write fails.
        """
        if not self.is_open:
            raise SendError(f"Cannot send {frame.message_type.value}: connection is not open")

        data = frame.data
        message = data if frame.carries_audio else data.decode("utf-8")
        try:
            await self.websocket.send(message)
        except ConnectionClosed as e:
            raise SendError(f"Connection closed while sending {frame.message_type.value}: {e}") from e

        logger.debug(f"Sent {frame.message_type.value} ({len(frame.payload)} payload bytes)")

    async def _read_messages(self) -> None:
        """Deliver inbound messages to the handler until the connection ends."""
        try:
            async for message in self.websocket:
                if self._handler is None:
                    logger.debug("No message handler registered, dropping message")
                    continue
                try:
                    self._handler(message)
                except Exception as e:
                    logger.error(f"Error in message handler: {e}")
        except ConnectionClosed as e:
            logger.info(f"Connection closed by server: {e}")
        finally:
            self._closed.set()

    async def wait_closed(self) -> None:
        """Wait until the inbound side of the connection has ended."""
        await self._closed.wait()

    async def close(self) -> None:
        """Close the connection. Safe to call repeatedly and after errors."""
        if self._close_started:
            return
        self._close_started = True

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        if self.websocket is not None:
            try:
                await self.websocket.close()
            except OSError as e:
                logger.debug(f"Error closing connection: {e}")
            logger.info("Connection closed")

        self._closed.set()
