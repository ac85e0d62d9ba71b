import base64
import json

import pytest

from transcription_engine.services.payload_classifier.classifier import (
    ClassifiedText,
    RawSideChannelMessage,
    classify_message,
    classify_payload,
    decode_base64_text,
    extract_finality,
    is_bulk_token,
    is_control_pattern,
    is_likely_transcription,
    normalize_payload,
)


def b64(value) -> str:
    raw = value if isinstance(value, str) else json.dumps(value)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


@pytest.mark.unit
class TestPatternHelpers:
    """Test the low-level pattern checks."""

    @pytest.mark.parametrize("frame", ["4e7d34a5|1|1|", "abc|12|3", "DEADBEEF|0|99|", "0|0|0"])
    def test_control_patterns(self, frame):
        assert is_control_pattern(frame)

    @pytest.mark.parametrize("text", ["hello|1|1|", "4e7d34a5|1|", "4e7d|x|1|"])
    def test_not_control_patterns(self, text):
        assert not is_control_pattern(text)

    def test_bulk_token_threshold(self):
        assert is_bulk_token("A" * 30)
        assert not is_bulk_token("A" * 29)
        assert not is_bulk_token("A" * 40 + " word")

    def test_decode_tolerates_missing_padding(self):
        encoded = b64("hi you").rstrip("=")
        assert decode_base64_text(encoded) == "hi you"

    def test_decode_rejects_non_base64(self):
        assert decode_base64_text("not base64!") is None
        assert decode_base64_text("") is None

    def test_decode_rejects_non_utf8(self):
        assert decode_base64_text(base64.b64encode(b"\xff\xfe\xfd").decode()) is None

    def test_normalize_payload_types(self):
        assert normalize_payload("text") == "text"
        assert normalize_payload(b"bytes") == "bytes"
        assert normalize_payload({"message": "from dict"}) == "from dict"
        assert json.loads(normalize_payload({"foo": 1})) == {"foo": 1}
        assert normalize_payload(12345) is None

    def test_finality_flags(self):
        assert extract_finality({}) is True
        assert extract_finality({"isFinal": False}) is False
        assert extract_finality({"final": "false"}) is False
        assert extract_finality({"isFinal": None, "final": 0}) is False
        assert extract_finality({"isFinal": "true", "final": False}) is True


@pytest.mark.unit
class TestIsLikelyTranscription:
    """Test the plain-text heuristics."""

    @pytest.mark.parametrize(
        "text",
        ["hey", "hello there", "Okay, let's start the meeting.", "¿qué tal?", "abcdef1234"],
    )
    def test_speech_is_accepted(self, text):
        assert is_likely_transcription(text)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "ok",
            "12345 678",
            "4e7d34a5|1|1|",
            "A" * 40,
            "deadbeefcafebabe1234",
            "4e7d34a5|1|1|\n" + "B" * 40,
        ],
    )
    def test_noise_is_rejected(self, text):
        assert not is_likely_transcription(text)


@pytest.mark.unit
class TestClassifyPayload:
    """Test the ordered classification of side-channel payloads."""

    @pytest.mark.parametrize("payload", ["", " ", "a", "4e7d34a5|1|1|", "ff|2|0"])
    def test_trivial_and_control_payloads_rejected(self, payload):
        assert classify_payload(payload, "spk1") is None

    def test_plain_text_keeps_original_text(self):
        result = classify_payload("  hello there  ", "spk1")

        assert result == ClassifiedText(speaker_id="spk1", text="hello there", is_final=True)

    def test_bytes_payload(self):
        assert classify_payload(b"good morning", "spk1").text == "good morning"

    def test_dict_payload_with_text(self):
        assert classify_payload({"text": "hello dict"}, "spk1").text == "hello dict"

    def test_dict_payload_keeps_interim_flag(self):
        result = classify_payload({"text": "hello there", "isFinal": False}, "spk1")

        assert result == ClassifiedText(speaker_id="spk1", text="hello there", is_final=False)

    def test_dict_payload_speaker_override(self):
        result = classify_payload({"transcript": "over here", "speakerId": "remote-3"}, "spk1")

        assert result.speaker_id == "remote-3"
        assert result.text == "over here"

    def test_dict_metadata_payload_rejected(self):
        assert classify_payload({"object": "message.state", "text": "state"}, "spk1") is None

    def test_dict_wrapping_embedded_frame(self):
        frame = "4e7d34a5|1|1|" + b64({"text": "wrapped hello", "final": False})

        result = classify_payload({"data": frame, "uid": "remote-9"}, "spk1")

        assert result == ClassifiedText(speaker_id="remote-9", text="wrapped hello", is_final=False)

    def test_unsupported_payload_type(self):
        assert classify_payload(12345, "spk1") is None

    def test_opaque_bulk_token_rejected(self):
        assert classify_payload("A" * 40, "spk1") is None

    def test_bulk_token_decoding_to_plain_text_rejected(self):
        token = b64("this is not json at all really")
        assert is_bulk_token(token)

        assert classify_payload(token, "spk1") is None

    def test_bulk_token_with_structured_speech(self):
        token = b64({"text": "hello from bulk", "isFinal": False})
        assert is_bulk_token(token)

        result = classify_payload(token, "spk1")

        assert result.text == "hello from bulk"
        assert result.is_final is False

    def test_embedded_structured_payload(self):
        frame = "4e7d34a5|1|1|" + b64({"transcript": "embedded hello", "isFinal": False})

        result = classify_payload(frame, "spk1")

        assert result.text == "embedded hello"
        assert result.is_final is False

    @pytest.mark.parametrize("obj", ["user.transcript", "assistant.transcript"])
    def test_embedded_transcript_object_accepted(self, obj):
        frame = "2e93eb8c|1|1|" + b64({"object": obj, "text": "hello world"})

        assert classify_payload(frame, "spk1") == ClassifiedText("spk1", "hello world", True)

    def test_embedded_state_with_nested_message_text(self):
        frame = "2e93eb8c|1|1|" + b64({"object": "message.state", "message": {"text": "nested hi"}})

        assert classify_payload(frame, "spk1").text == "nested hi"

    def test_embedded_state_without_text_rejected(self):
        frame = "2e93eb8c|1|1|" + b64({"object": "message.state", "state": "listening"})

        assert classify_payload(frame, "spk1") is None

    def test_embedded_plain_text_payload(self):
        frame = "4e7d34a5|1|1|" + b64("good morning")

        result = classify_payload(frame, "spk1")

        assert result.text == "good morning"
        assert result.is_final is True

    def test_embedded_control_frame_rejected(self):
        frame = "4e7d34a5|1|1|" + b64("99|2|3|")
        assert classify_payload(frame, "spk1") is None

    def test_short_base64_wrapped_json(self):
        token = b64({"text": "hi you"})
        assert 20 < len(token) < 30

        assert classify_payload(token, "spk1").text == "hi you"

    def test_multi_line_noise_rejected(self):
        payload = "4e7d34a5|1|1|\n" + "C" * 40 + "\nabc|2|2|"
        assert classify_payload(payload, "spk1") is None

    @pytest.mark.parametrize(
        "value, expected",
        [
            ({"text": "plain field"}, "plain field"),
            ({"speech": "speech field"}, "speech field"),
            ({"transcription": "last field"}, "last field"),
            ({"message": {"transcript": "nested message"}}, "nested message"),
            ({"data": {"content": "nested data"}}, "nested data"),
            ({"message": "message string"}, "message string"),
        ],
    )
    def test_structured_text_fields(self, value, expected):
        assert classify_payload(json.dumps(value), "spk1").text == expected

    def test_text_field_order(self):
        value = {"content": "second", "text": "first"}
        assert classify_payload(json.dumps(value), "spk1").text == "first"

    def test_unacceptable_field_is_skipped(self):
        value = {"text": "4e7d34a5|1|1|", "content": "real words"}
        assert classify_payload(json.dumps(value), "spk1").text == "real words"

    @pytest.mark.parametrize(
        "value",
        [
            {"object": "message.state", "text": "state text"},
            {"object": "user.transcript", "text": "echo"},
            {"type": "metadata", "text": "meta"},
            {"event": "metadata", "transcript": "meta"},
        ],
    )
    def test_metadata_rejected(self, value):
        assert classify_payload(json.dumps(value), "spk1") is None

    def test_structured_without_text_rejected(self):
        assert classify_payload(json.dumps({"foo": "bar", "count": 3}), "spk1") is None

    def test_structured_array_rejected(self):
        assert classify_payload(json.dumps(["hello", "world"]), "spk1") is None

    def test_structured_speaker_override(self):
        value = {"text": "hi there", "uid": "remote-7"}
        assert classify_payload(json.dumps(value), "spk1").speaker_id == "remote-7"

    def test_classify_message(self):
        message = RawSideChannelMessage(sender_id="spk2", payload="hello world", sequence=4)

        result = classify_message(message)

        assert result.speaker_id == "spk2"
        assert result.text == "hello world"
