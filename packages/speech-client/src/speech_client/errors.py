"""Exception hierarchy for the speech recognition client."""


class SpeechClientError(Exception):
    """Base exception for speech client errors."""


class AuthError(SpeechClientError):
    """Subscription key rejected or token endpoint unreachable."""


class ConnectError(SpeechClientError):
    """WebSocket handshake, DNS or TLS failure, or connection lost."""


class EncodeError(SpeechClientError):
    """Frame could not be built from the session context."""


class SendError(SpeechClientError):
    """Frame could not be written to the connection."""


class UnrecognizedMessageError(SpeechClientError):
    """Inbound message has no shape the client understands."""


class SessionError(SpeechClientError):
    """Recognition session misuse or abnormal termination."""


class SessionCancelledError(SessionError):
    """Session was cancelled before completion."""


class AckTimeoutError(SessionError):
    """Server did not acknowledge the connection context in time."""


class ResultTimeoutError(SessionError):
    """No final recognition result arrived in time."""
