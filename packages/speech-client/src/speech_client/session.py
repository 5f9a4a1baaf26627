"""Recognition session: token, connection, audio stream, final result."""

import asyncio
import logging
import os
import threading
from enum import Enum, auto
from typing import BinaryIO, Callable, Iterator, Optional, Union

from .auth import CredentialProvider
from .config import RecognitionMode, Settings, settings
from .dispatcher import MessageDispatcher, ResultHandlers
from .errors import (
    AckTimeoutError,
    ConnectError,
    ResultTimeoutError,
    SendError,
    SessionCancelledError,
    SessionError,
)
from .protocol import (
    Frame,
    RecognitionResult,
    SessionContext,
    encode_audio_body,
    encode_audio_end,
    encode_audio_start,
    encode_context,
)
from .transport import StreamingTransport, build_handshake_headers

logger = logging.getLogger(__name__)

AudioSource = Union[str, "os.PathLike[str]", BinaryIO]


class SessionState(Enum):
    """Recognition session state machine states."""
    IDLE = auto()            # Not started
    AUTHENTICATING = auto()  # Fetching bearer token
    CONNECTING = auto()      # Opening WebSocket, sending context
    AWAITING_ACK = auto()    # Context sent, not yet streaming
    STREAMING = auto()       # Sending audio start/body frames
    DRAINING = auto()        # Audio end sent, waiting for final result
    COMPLETED = auto()
    FAILED = auto()


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED})


class CancellationToken:
    """Cooperative cancellation signal, safe to set from any thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SessionCancelledError("Session cancelled")


def iter_chunks(source: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    """Yield sequential chunks of at most chunk_size bytes until EOF."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            return
        yield chunk


class RecognitionSession:
    """Runs one recognition request at a time.

    Frames are sent strictly as context, start, body*, end. Inbound
    messages are dispatched concurrently by the transport's reader task;
    partial results reach the optional handlers and ``dispatcher.partials``
    while the audio is still streaming.
    """

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        transport_factory: Optional[Callable[[], StreamingTransport]] = None,
        handlers: Optional[ResultHandlers] = None,
        config: Optional[Settings] = None,
    ):
        """Initialize the session.

        Args:
            credentials: Token provider. A CredentialProvider is created from
                         the auth settings if not provided.
            transport_factory: Builds a fresh transport per connection attempt.
            handlers: Callbacks for partial and final results.
            config: Settings. Uses global settings if not provided.
        """
        self.settings = config or settings
        self.credentials = credentials or CredentialProvider(self.settings.auth)
        self.transport_factory = transport_factory or (
            lambda: StreamingTransport(self.settings.session)
        )
        self.handlers = handlers
        self.state = SessionState.IDLE
        self.transitions: list[SessionState] = [SessionState.IDLE]
        self.context: Optional[SessionContext] = None
        self.dispatcher: Optional[MessageDispatcher] = None
        self._transport: Optional[StreamingTransport] = None
        self._cancel = CancellationToken()
        self._running = False

    def cancel(self) -> None:
        """Cancel the active run; observed before the next chunk or frame."""
        self._cancel.cancel()

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Session state {self.state.name} -> {state.name}")
        self.state = state
        self.transitions.append(state)

    async def run(
        self,
        audio_source: AudioSource,
        locale: str,
        mode: Union[RecognitionMode, str],
        secret: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RecognitionResult:
        """Recognize the audio and return the final result.

        Args:
            audio_source: Path to an audio file, or a binary file object. It
                          is closed when the session ends.
            locale: Locale tag, e.g. "en-US".
            mode: Short phrase or long dictation.
            secret: Subscription key exchanged for a bearer token.
            cancel_token: External cancellation signal.

        Raises:
            AuthError, ConnectError, EncodeError, SendError: Fatal protocol
                failures; the session ends in FAILED.
            SessionCancelledError: Cancelled before completion.
            AckTimeoutError, ResultTimeoutError: Server did not respond.
        """
        if self._running:
            raise SessionError("A recognition session is already running")
        if not isinstance(mode, RecognitionMode):
            mode = RecognitionMode.parse(mode)

        self._cancel = cancel_token if cancel_token is not None else CancellationToken()
        if self.state is not SessionState.IDLE:
            self.state = SessionState.IDLE
            self.transitions = [SessionState.IDLE]

        source: Optional[BinaryIO] = None
        self._transport = None
        self.dispatcher = MessageDispatcher(self.handlers)
        self.context = SessionContext(
            locale=locale,
            mode=mode,
            client_version=self.settings.service.client_version,
        )
        conversation = self.context.conversation_id

        self._running = True
        try:
            source = self._open_source(audio_source)

            self._transition(SessionState.AUTHENTICATING)
            self._cancel.raise_if_cancelled()
            token = await self.credentials.fetch_token(secret)

            self._transition(SessionState.CONNECTING)
            await self._connect(token)
            await self._send(encode_context(self.context, self.settings.service.network_type))

            self._transition(SessionState.AWAITING_ACK)
            if self.settings.session.require_ack:
                await self._await_ack()

            self._transition(SessionState.STREAMING)
            await self._stream_audio(source)

            self._transition(SessionState.DRAINING)
            await self._send(encode_audio_end(self.context))
            result = await self._await_final()

            self._transition(SessionState.COMPLETED)
            logger.info(f"Session {conversation} completed: {result.recognition_status}")
            return result

        except asyncio.CancelledError:
            self._transition(SessionState.FAILED)
            logger.warning(f"Session {conversation} cancelled")
            raise
        except Exception as e:
            self._transition(SessionState.FAILED)
            logger.error(f"Session {conversation} failed: {e}")
            raise
        finally:
            await self._release(source)
            self._running = False

    def _open_source(self, audio_source: AudioSource) -> BinaryIO:
        if isinstance(audio_source, (str, os.PathLike)):
            return open(audio_source, "rb")
        return audio_source

    async def _connect(self, token: str) -> None:
        """Open the transport, retrying with exponential backoff."""
        service = self.settings.service
        session_config = self.settings.session
        url = self.context.mode.endpoint(service)
        headers = build_handshake_headers(token, self.context.locale, service)

        for attempt in range(session_config.connect_attempts):
            self._cancel.raise_if_cancelled()
            transport = self.transport_factory()
            transport.on_message(self.dispatcher)
            try:
                await transport.connect(url, headers)
            except ConnectError as e:
                await transport.close()
                if attempt + 1 >= session_config.connect_attempts:
                    raise
                delay = session_config.reconnect_delay * (2 ** attempt)
                logger.warning(f"Connection attempt {attempt + 1} failed ({e}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
            else:
                self._transport = transport
                logger.info(f"Session {self.context.conversation_id} connected ({self.context.mode.value} mode)")
                return

    async def _send(self, frame: Frame) -> None:
        self._cancel.raise_if_cancelled()
        if self.state in TERMINAL_STATES or self._transport is None:
            raise SendError(f"Cannot send {frame.message_type.value} in state {self.state.name}")
        await self._transport.send(frame)

    async def _await_ack(self) -> None:
        timeout = self.settings.session.ack_timeout
        try:
            await self.dispatcher.wait_for_message(timeout=timeout)
        except asyncio.TimeoutError:
            raise AckTimeoutError(f"No server message within {timeout}s of the connection context") from None

    async def _stream_audio(self, source: BinaryIO) -> None:
        started = False
        for chunk in iter_chunks(source, self.settings.audio.chunk_size):
            self._cancel.raise_if_cancelled()
            if not started:
                frame = encode_audio_start(self.context, chunk)
                started = True
            else:
                frame = encode_audio_body(self.context, chunk)
            await self._send(frame)

        if not started:
            # Empty source: keep exactly one start before the end frame
            await self._send(encode_audio_start(self.context, b""))

    async def _await_final(self) -> RecognitionResult:
        """Wait for the final result, the connection closing, or the timeout."""
        timeout = self.settings.session.final_timeout
        final_task = asyncio.ensure_future(self.dispatcher.next_final())
        closed_task = asyncio.ensure_future(self._transport.wait_closed())
        try:
            done, _ = await asyncio.wait(
                {final_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (final_task, closed_task):
                if not task.done():
                    task.cancel()

        if final_task in done:
            return final_task.result()
        if closed_task in done:
            if not self.dispatcher.finals.empty():
                return self.dispatcher.finals.get_nowait()
            raise ConnectError("Connection closed before a final result arrived")
        raise ResultTimeoutError(f"No final result within {timeout}s")

    async def _release(self, source: Optional[BinaryIO]) -> None:
        if self._transport is not None:
            await self._transport.close()
        if source is not None:
            try:
                source.close()
            except OSError as e:
                logger.debug(f"Error closing audio source: {e}")


async def recognize(
    audio_source: AudioSource,
    locale: str,
    mode: Union[RecognitionMode, str],
    secret: str,
    handlers: Optional[ResultHandlers] = None,
) -> RecognitionResult:
    """Run a single recognition session with default settings."""
    session = RecognitionSession(handlers=handlers)
    return await session.run(audio_source, locale, mode, secret)
