"""Tests for frame encoding and inbound message decoding."""

import json

import pytest

from speech_client.config import RecognitionMode
from speech_client.errors import EncodeError, UnrecognizedMessageError
from speech_client.protocol import (
    MessageType,
    RecognitionResult,
    SessionContext,
    decode_server_message,
    encode_audio_body,
    encode_audio_end,
    encode_audio_start,
    encode_context,
)

from conftest import split_frame


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(
        locale="en-US",
        conversation_id="1adc3fd78ca7417bb6cb40ef183a145e",
        search_ig="9f2c48c221194eefa4c6f39d10bd8a5a",
    )


class TestSessionContext:
    """Tests for SessionContext identifiers."""

    def test_generates_unique_identifiers(self):
        first = SessionContext(locale="en-US")
        second = SessionContext(locale="en-US")

        assert len(first.conversation_id) == 32
        assert first.conversation_id != second.conversation_id
        assert first.search_ig != first.conversation_id

    def test_is_immutable(self, session):
        with pytest.raises(Exception):
            session.locale = "de-DE"

    def test_defaults(self, session):
        assert session.mode is RecognitionMode.SHORT
        assert session.client_version == "2.0.0"


class TestFrameEncoding:
    """Tests for the four outbound frame kinds."""

    def test_context_frame_exact_bytes(self, session):
        frame = encode_context(session)

        assert frame.data == (
            b"X-CU-ClientVersion:2.0.0\n"
            b"X-CU-Locale:en-US\n"
            b"X-Search-IG:9f2c48c221194eefa4c6f39d10bd8a5a\n"
            b"X-CU-ConversationId:1adc3fd78ca7417bb6cb40ef183a145e\n"
            b"X-LOBBY-MESSAGE-TYPE:connection.context\n"
            b"\n"
            b'{"Groups":{"LocalProperties":{"Id":"LocalProperties","Info":{"NetworkType":"Ethernet"}}}}'
        )
        assert not frame.carries_audio

    def test_context_network_type(self, session):
        frame = encode_context(session, network_type="Wifi")
        payload = json.loads(frame.payload)

        assert payload["Groups"]["LocalProperties"]["Info"]["NetworkType"] == "Wifi"

    def test_audio_start_appends_chunk_verbatim(self, session):
        chunk = bytes(range(256)) * 4
        frame = encode_audio_start(session, chunk)
        headers, payload = split_frame(frame.data)

        assert frame.message_type is MessageType.AUDIO_START
        assert headers["X-LOBBY-MESSAGE-TYPE"] == "audio.stream.start"
        assert payload == chunk
        assert frame.carries_audio

    def test_audio_body_has_no_length_prefix(self, session):
        chunk = b"\x00\xb9audio"
        frame = encode_audio_body(session, chunk)

        assert frame.data.startswith(b"X-CU-ClientVersion:")
        assert frame.data.endswith(b"X-LOBBY-MESSAGE-TYPE:audio.stream.body\n\n" + chunk)

    def test_audio_end_has_empty_payload(self, session):
        frame = encode_audio_end(session)

        assert frame.payload == b""
        assert frame.data.endswith(b"X-LOBBY-MESSAGE-TYPE:audio.stream.end\n\n")
        assert not frame.carries_audio

    def test_every_frame_carries_all_headers(self, session):
        frames = [
            encode_context(session),
            encode_audio_start(session, b"a"),
            encode_audio_body(session, b"b"),
            encode_audio_end(session),
        ]

        for frame in frames:
            assert [key for key, _ in frame.headers] == [
                "X-CU-ClientVersion",
                "X-CU-Locale",
                "X-Search-IG",
                "X-CU-ConversationId",
                "X-LOBBY-MESSAGE-TYPE",
            ]
            assert all(value for _, value in frame.headers)
            assert frame.header("X-CU-ConversationId") == session.conversation_id

    def test_missing_conversation_id_raises(self):
        session = SessionContext(locale="en-US", conversation_id="")

        with pytest.raises(EncodeError, match="conversation identifier"):
            encode_audio_start(session, b"audio")

    def test_empty_locale_raises(self):
        session = SessionContext(locale="")

        with pytest.raises(EncodeError, match="X-CU-Locale"):
            encode_context(session)

    def test_line_break_in_header_value_raises(self):
        session = SessionContext(locale="en-US\nX-Injected:1")

        with pytest.raises(EncodeError, match="Line break"):
            encode_audio_end(session)


class TestDecodeServerMessage:
    """Tests for decode_server_message()."""

    def test_plain_json(self):
        assert decode_server_message('{"DisplayText": "hi"}') == {"DisplayText": "hi"}

    def test_binary_json(self):
        assert decode_server_message(b'{"DisplayText": "hi"}') == {"DisplayText": "hi"}

    def test_skips_header_block(self):
        message = (
            "X-RequestId:123\r\n"
            "Path:speech.hypothesis\r\n"
            "\r\n"
            '{"DisplayText": "hel"}'
        )

        assert decode_server_message(message) == {"DisplayText": "hel"}

    @pytest.mark.parametrize(
        "message",
        ["not json", "[1, 2]", b"\xff\xfe", "Path:turn.start\r\n\r\n"],
    )
    def test_rejects_non_objects(self, message):
        with pytest.raises(UnrecognizedMessageError):
            decode_server_message(message)


class TestRecognitionResult:
    """Tests for RecognitionResult."""

    def test_parses_service_field_names(self):
        result = RecognitionResult.model_validate(
            {
                "RecognitionStatus": "Success",
                "Phrases": [
                    {"DisplayText": "hello word", "Confidence": 0.42},
                    {"DisplayText": "hello world", "Confidence": 0.91},
                ],
            }
        )

        assert result.recognition_status == "Success"
        assert [p.display_text for p in result.phrases] == ["hello word", "hello world"]
        assert result.best_phrase.display_text == "hello world"

    def test_best_phrase_without_phrases(self):
        result = RecognitionResult.model_validate({"RecognitionStatus": "NoMatch"})

        assert result.phrases == []
        assert result.best_phrase is None
