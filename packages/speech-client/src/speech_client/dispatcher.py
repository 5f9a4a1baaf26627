"""Classification and routing of inbound server messages."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional, Union

from pydantic import ValidationError

from .errors import UnrecognizedMessageError
from .protocol import PartialResult, RecognitionResult, ServerResult, decode_server_message

logger = logging.getLogger(__name__)

InboundMessage = Union[str, bytes, dict]


class MessageKind(Enum):
    """Shape of an inbound message."""
    PARTIAL = auto()       # Speculative hypothesis
    FINAL = auto()         # Terminal phrase result
    UNRECOGNIZED = auto()  # Anything else, dropped


@dataclass
class ResultHandlers:
    """User callbacks for classified results. Either may be omitted."""

    on_partial: Optional[Callable[[PartialResult], None]] = None
    on_final: Optional[Callable[[RecognitionResult], None]] = None


def _as_payload(message: InboundMessage) -> Optional[dict]:
    if isinstance(message, dict):
        return message
    try:
        return decode_server_message(message)
    except UnrecognizedMessageError as e:
        logger.debug(f"Undecodable message: {e}")
        return None


def _classify_payload(payload: Optional[dict]) -> MessageKind:
    if payload is None:
        return MessageKind.UNRECOGNIZED
    if "RecognitionStatus" in payload:
        return MessageKind.FINAL
    if "DisplayText" in payload:
        return MessageKind.PARTIAL
    return MessageKind.UNRECOGNIZED


def classify(message: InboundMessage) -> MessageKind:
    """Classify a raw or decoded message by its JSON shape."""
    return _classify_payload(_as_payload(message))


def parse_result(message: InboundMessage) -> ServerResult:
    """Decode and validate a partial or final result.

    Raises:
        UnrecognizedMessageError: If the message is neither, or its fields
            do not validate.
    """
    payload = _as_payload(message)
    kind = _classify_payload(payload)
    try:
        if kind is MessageKind.FINAL:
            return RecognitionResult.model_validate(payload)
        if kind is MessageKind.PARTIAL:
            return PartialResult.model_validate(payload)
    except ValidationError as e:
        raise UnrecognizedMessageError(f"Malformed {kind.name.lower()} result: {e}") from e
    raise UnrecognizedMessageError(f"Unknown message shape: {sorted(payload or {})}")


def route(message: InboundMessage, handlers: ResultHandlers) -> MessageKind:
    """Classify a message and invoke the matching handler.

    Unrecognized and malformed messages are logged and dropped so that new
    server message types never break a session.
    """
    try:
        result = parse_result(message)
    except UnrecognizedMessageError as e:
        logger.debug(f"Dropping unrecognized message: {e}")
        return MessageKind.UNRECOGNIZED

    if isinstance(result, RecognitionResult):
        if handlers.on_final:
            handlers.on_final(result)
        return MessageKind.FINAL

    if handlers.on_partial:
        handlers.on_partial(result)
    return MessageKind.PARTIAL


class MessageDispatcher:
    """Routes inbound messages onto typed result channels.

    Partial results are queued on ``partials`` and final results on
    ``finals`` for the caller to consume. Optional handlers are invoked as
    well; a failing handler is logged and does not affect the channels.
    Instances are callable so they can be registered directly as a
    transport message handler.
    """

    def __init__(self, handlers: Optional[ResultHandlers] = None):
        self.handlers = handlers or ResultHandlers()
        self.partials: asyncio.Queue[PartialResult] = asyncio.Queue()
        self.finals: asyncio.Queue[RecognitionResult] = asyncio.Queue()
        self._received = asyncio.Event()

    def __call__(self, message: InboundMessage) -> MessageKind:
        return self.dispatch(message)

    def dispatch(self, message: InboundMessage) -> MessageKind:
        self._received.set()
        return route(
            message,
            ResultHandlers(on_partial=self._on_partial, on_final=self._on_final),
        )

    def _on_partial(self, result: PartialResult) -> None:
        self.partials.put_nowait(result)
        logger.debug(f"Partial result: {result.display_text[:50]}")
        if self.handlers.on_partial:
            try:
                self.handlers.on_partial(result)
            except Exception as e:
                logger.error(f"Error in partial result handler: {e}")

    def _on_final(self, result: RecognitionResult) -> None:
        self.finals.put_nowait(result)
        logger.debug(f"Final result: status={result.recognition_status}, {len(result.phrases)} phrases")
        if self.handlers.on_final:
            try:
                self.handlers.on_final(result)
            except Exception as e:
                logger.error(f"Error in final result handler: {e}")

    async def wait_for_message(self, timeout: Optional[float] = None) -> None:
        """Wait until any inbound message, recognized or not, has arrived."""
        await asyncio.wait_for(self._received.wait(), timeout=timeout)

    async def next_final(self, timeout: Optional[float] = None) -> RecognitionResult:
        """Wait for the next final result.

        Raises:
            asyncio.TimeoutError: If none arrives within ``timeout`` seconds.
        """
        return await asyncio.wait_for(self.finals.get(), timeout=timeout)
