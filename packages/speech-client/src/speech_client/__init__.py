"""Speech Client - streaming speech recognition over WebSocket.

Streams an audio byte source to the recognition service and delivers
partial hypotheses and the final phrase result.

Example usage:
    from speech_client import RecognitionSession, ResultHandlers

    session = RecognitionSession(
        handlers=ResultHandlers(on_partial=lambda r: print(r.display_text)),
    )
    result = await session.run("speech.wav", "en-US", "short", subscription_key)
    print(result.best_phrase.display_text)
"""

__version__ = "0.1.0"

from .config import RecognitionMode, Settings, settings
from .errors import (
    AckTimeoutError,
    AuthError,
    ConnectError,
    EncodeError,
    ResultTimeoutError,
    SendError,
    SessionCancelledError,
    SessionError,
    SpeechClientError,
    UnrecognizedMessageError,
)
from .auth import CachedCredentialProvider, CredentialProvider
from .protocol import (
    Frame,
    MessageType,
    PartialResult,
    PhraseResult,
    RecognitionResult,
    SessionContext,
    encode_audio_body,
    encode_audio_end,
    encode_audio_start,
    encode_context,
)
from .transport import StreamingTransport, build_handshake_headers
from .dispatcher import MessageDispatcher, MessageKind, ResultHandlers, classify, route
from .session import (
    CancellationToken,
    RecognitionSession,
    SessionState,
    iter_chunks,
    recognize,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "RecognitionMode",
    "Settings",
    "settings",
    # Errors
    "SpeechClientError",
    "AuthError",
    "ConnectError",
    "EncodeError",
    "SendError",
    "UnrecognizedMessageError",
    "SessionError",
    "SessionCancelledError",
    "AckTimeoutError",
    "ResultTimeoutError",
    # Credentials
    "CredentialProvider",
    "CachedCredentialProvider",
    # Protocol
    "Frame",
    "MessageType",
    "SessionContext",
    "PartialResult",
    "PhraseResult",
    "RecognitionResult",
    "encode_context",
    "encode_audio_start",
    "encode_audio_body",
    "encode_audio_end",
    # Transport
    "StreamingTransport",
    "build_handshake_headers",
    # Dispatcher
    "MessageDispatcher",
    "MessageKind",
    "ResultHandlers",
    "classify",
    "route",
    # Session
    "CancellationToken",
    "RecognitionSession",
    "SessionState",
    "iter_chunks",
    "recognize",
]
