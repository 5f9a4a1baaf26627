"""Wire protocol for the speech recognition service.

Outbound frames are a UTF-8 header block of ``Key:Value`` lines, terminated
by a blank line, followed by the raw payload bytes. Inbound messages are
JSON, optionally preceded by a header block of the same shape.
"""

import json
import uuid
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import RecognitionMode
from .errors import EncodeError, UnrecognizedMessageError


class MessageType(str, Enum):
    """X-LOBBY-MESSAGE-TYPE values."""

    CONTEXT = "connection.context"
    AUDIO_START = "audio.stream.start"
    AUDIO_BODY = "audio.stream.body"
    AUDIO_END = "audio.stream.end"


HEADER_CLIENT_VERSION = "X-CU-ClientVersion"
HEADER_LOCALE = "X-CU-Locale"
HEADER_SEARCH_IG = "X-Search-IG"
HEADER_CONVERSATION_ID = "X-CU-ConversationId"
HEADER_MESSAGE_TYPE = "X-LOBBY-MESSAGE-TYPE"


def _new_id() -> str:
    return uuid.uuid4().hex


class SessionContext(BaseModel):
    """Identifiers shared by every frame of one recognition session."""

    model_config = ConfigDict(frozen=True)

    locale: str
    mode: RecognitionMode = RecognitionMode.SHORT
    client_version: str = "2.0.0"
    conversation_id: str = Field(default_factory=_new_id)
    search_ig: str = Field(default_factory=_new_id)


class Frame(BaseModel):
    """One outbound protocol message: header block plus payload."""

    model_config = ConfigDict(frozen=True)

    message_type: MessageType
    headers: tuple[tuple[str, str], ...]
    payload: bytes = b""

    @property
    def header_block(self) -> bytes:
        lines = "".join(f"{key}:{value}\n" for key, value in self.headers)
        return f"{lines}\n".encode("utf-8")

    @property
    def data(self) -> bytes:
        """Complete wire bytes of the frame."""
        return self.header_block + self.payload

    @property
    def carries_audio(self) -> bool:
        return self.message_type in (MessageType.AUDIO_START, MessageType.AUDIO_BODY)

    def header(self, key: str) -> Optional[str]:
        for name, value in self.headers:
            if name == key:
                return value
        return None


def _build_headers(session: SessionContext, message_type: MessageType) -> tuple[tuple[str, str], ...]:
    if not session.conversation_id:
        raise EncodeError("Session context has no conversation identifier")

    headers = (
        (HEADER_CLIENT_VERSION, session.client_version),
        (HEADER_LOCALE, session.locale),
        (HEADER_SEARCH_IG, session.search_ig),
        (HEADER_CONVERSATION_ID, session.conversation_id),
        (HEADER_MESSAGE_TYPE, message_type.value),
    )
    for key, value in headers:
        if not value:
            raise EncodeError(f"Empty value for frame header {key}")
        if "\n" in value or "\r" in value:
            raise EncodeError(f"Line break in value for frame header {key}")
    return headers


def encode_context(session: SessionContext, network_type: str = "Ethernet") -> Frame:
    """Build the connection.context frame describing the client network."""
    body = {
        "Groups": {
            "LocalProperties": {
                "Id": "LocalProperties",
                "Info": {"NetworkType": network_type},
            }
        }
    }
    return Frame(
        message_type=MessageType.CONTEXT,
        headers=_build_headers(session, MessageType.CONTEXT),
        payload=json.dumps(body, separators=(",", ":")).encode("utf-8"),
    )


def encode_audio_start(session: SessionContext, chunk: bytes) -> Frame:
    """Build the audio.stream.start frame carrying the first chunk."""
    return Frame(
        message_type=MessageType.AUDIO_START,
        headers=_build_headers(session, MessageType.AUDIO_START),
        payload=bytes(chunk),
    )


def encode_audio_body(session: SessionContext, chunk: bytes) -> Frame:
    """Build an audio.stream.body frame carrying a subsequent chunk."""
    return Frame(
        message_type=MessageType.AUDIO_BODY,
        headers=_build_headers(session, MessageType.AUDIO_BODY),
        payload=bytes(chunk),
    )


def encode_audio_end(session: SessionContext) -> Frame:
    """Build the empty audio.stream.end frame."""
    return Frame(
        message_type=MessageType.AUDIO_END,
        headers=_build_headers(session, MessageType.AUDIO_END),
    )


# Server -> Client messages


class PartialResult(BaseModel):
    """Speculative, non-final recognition hypothesis."""

    model_config = ConfigDict(populate_by_name=True)

    display_text: str = Field(alias="DisplayText")


class PhraseResult(BaseModel):
    """One recognized phrase alternative."""

    model_config = ConfigDict(populate_by_name=True)

    display_text: Optional[str] = Field(default="", alias="DisplayText")
    confidence: Optional[float] = Field(default=0.0, alias="Confidence")

    @field_validator("display_text", mode="after")
    @classmethod
    def _null_text(cls, value: Optional[str]) -> str:
        return value or ""

    @field_validator("confidence", mode="after")
    @classmethod
    def _null_confidence(cls, value: Optional[float]) -> float:
        return 0.0 if value is None else value


class RecognitionResult(BaseModel):
    """Terminal recognition outcome for a session."""

    model_config = ConfigDict(populate_by_name=True)

    recognition_status: str = Field(alias="RecognitionStatus")
    phrases: Optional[list[PhraseResult]] = Field(default_factory=list, alias="Phrases")

    @field_validator("phrases", mode="after")
    @classmethod
    def _null_phrases(cls, value: Optional[list[PhraseResult]]) -> list[PhraseResult]:
        # Service sends "Phrases": null for NoMatch
        return value or []

    @property
    def best_phrase(self) -> Optional[PhraseResult]:
        """Highest-confidence phrase, or None when nothing was recognized."""
        if not self.phrases:
            return None
        return max(self.phrases, key=lambda phrase: phrase.confidence)


ServerResult = Union[PartialResult, RecognitionResult]


def decode_server_message(message: Union[str, bytes]) -> dict:
    """Decode an inbound message into its JSON object.

    A leading ``Key:Value`` header block, if present, is skipped.

    Raises:
        UnrecognizedMessageError: If the message is not a JSON object.
    """
    if isinstance(message, (bytes, bytearray)):
        try:
            message = bytes(message).decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnrecognizedMessageError(f"Binary message is not UTF-8: {e}") from e

    text = message.strip()
    if text and not text.startswith("{"):
        for separator in ("\r\n\r\n", "\n\n"):
            _, sep, body = text.partition(separator)
            if sep:
                text = body.strip()
                break

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise UnrecognizedMessageError(f"Message is not JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise UnrecognizedMessageError(f"Expected JSON object, got {type(parsed).__name__}")
    return parsed
