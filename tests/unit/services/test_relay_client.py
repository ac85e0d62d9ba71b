import asyncio
import json

import pytest
from aiohttp import test_utils, web

from transcription_engine.config import EngineConfig
from transcription_engine.server.common.relay_client import (
    GROQ_TRANSCRIPTION_ENDPOINT,
    OPENAI_DEFAULT_MODEL,
    TranscriptionRelayClient,
    construct_transcription_relay_client,
    extract_error_message,
    is_format_error,
    language_code,
    normalize_media_type,
    resolve_backend,
)
from transcription_engine.server.outcome import OutcomeKind, TranscriptionOutcome
from transcription_engine.server.testing.relay_client import MockTranscriptionRelayClient
from transcription_engine.services.chunk_encoder.manager import Chunk
from transcription_engine.utils import get_current_timestamp


def make_chunk(sequence: int = 0, media_type: str = "audio/webm;codecs=opus") -> Chunk:
    return Chunk(
        payload=b"\x1aE\xdf\xa3chunk",
        media_type=media_type,
        sequence=sequence,
        speaker_id="spk1",
        produced_at=get_current_timestamp(),
        duration_ms=3000,
    )


@pytest.mark.unit
class TestRelayHelpers:
    """Test media type, language and error helpers."""

    @pytest.mark.parametrize(
        "media_type, expected",
        [
            ("audio/webm;codecs=opus", ("webm", "audio/webm")),
            ("audio/ogg;codecs=opus", ("ogg", "audio/ogg")),
            ("audio/mp4", ("m4a", "audio/m4a")),
            ("audio/wav", ("wav", "audio/wav")),
            ("audio/mpeg", ("mp3", "audio/mp3")),
            ("audio/x-unknown", ("webm", "audio/webm")),
            (None, ("webm", "audio/webm")),
        ],
    )
    def test_normalize_media_type(self, media_type, expected):
        assert normalize_media_type(media_type) == expected

    def test_language_code(self):
        assert language_code("en-US") == "en"
        assert language_code("PT-br") == "pt"
        assert language_code("") == "en"
        assert language_code(None) == "en"

    def test_extract_error_from_json(self):
        body = json.dumps({"error": {"message": "Invalid API key"}})
        assert extract_error_message(body) == "Invalid API key"

    def test_extract_error_from_plain_text(self):
        assert extract_error_message("  Bad gateway \n") == "Bad gateway"

    def test_format_error_detection(self):
        assert is_format_error("Could not process file - is it a valid media file?")
        assert is_format_error("Invalid media file")
        assert not is_format_error("rate limit exceeded")


@pytest.mark.unit
class TestBackendResolution:
    """Test picking the backend from config."""

    def test_explicit_relay_wins(self):
        config = EngineConfig(
            relay_endpoint="http://relay.local/transcribe", groq_api_key="g", openai_api_key="o"
        )
        backend = resolve_backend(config)
        assert backend.provider == "relay"
        assert backend.endpoint == "http://relay.local/transcribe"

    def test_groq_before_openai(self):
        backend = resolve_backend(EngineConfig(groq_api_key="g", openai_api_key="o"))
        assert backend.provider == "groq"
        assert backend.endpoint == GROQ_TRANSCRIPTION_ENDPOINT
        assert backend.api_key == "g"

    def test_openai_default_model(self):
        backend = resolve_backend(EngineConfig(openai_api_key="o"))
        assert backend.provider == "openai"
        assert backend.model == OPENAI_DEFAULT_MODEL

    def test_nothing_configured(self):
        assert resolve_backend(EngineConfig()) is None

    async def test_unconfigured_client_reports_unavailable(self):
        client = construct_transcription_relay_client(EngineConfig())
        await client.connect()
        try:
            outcome = await client.submit(make_chunk())
        finally:
            await client.disconnect()

        assert client.is_configured is False
        assert outcome.kind is OutcomeKind.UNAVAILABLE
        assert await client.health_check() is False


@pytest.mark.unit
class TestTranscriptionRelayClient:
    """Test submissions against a local HTTP backend."""

    @pytest.fixture
    async def backend(self):
        """Local backend whose reply is set per test via ``state['reply']``."""
        state = {"reply": (200, {"text": "hello"}), "delay": 0.0, "requests": []}

        async def transcribe(request: web.Request) -> web.Response:
            form = await request.post()
            upload = form["file"]
            state["requests"].append(
                {
                    "authorization": request.headers.get("Authorization"),
                    "filename": upload.filename,
                    "content_type": upload.content_type,
                    "payload": upload.file.read(),
                    "model": form["model"],
                    "language": form["language"],
                    "response_format": form["response_format"],
                }
            )
            if state["delay"]:
                await asyncio.sleep(state["delay"])

            status, body = state["reply"]
            if isinstance(body, (dict, list)):
                return web.json_response(body, status=status)
            return web.Response(text=body, status=status)

        app = web.Application()
        app.router.add_post("/transcribe", transcribe)
        server = test_utils.TestServer(app)
        await server.start_server()
        state["url"] = str(server.make_url("/transcribe"))

        yield state

        await server.close()

    @pytest.fixture
    async def client(self, backend):
        client = TranscriptionRelayClient(
            endpoint=backend["url"], api_key="secret", model="whisper-large-v3", timeout_seconds=2.0
        )
        await client.connect()
        yield client
        await client.disconnect()

    async def test_text_outcome(self, backend, client):
        backend["reply"] = (200, {"text": "  hello world  "})

        outcome = await client.submit(make_chunk(), language="en-US")

        assert outcome == TranscriptionOutcome.of_text("hello world", 200)
        request = backend["requests"][0]
        assert request["authorization"] == "Bearer secret"
        assert request["filename"] == "audio.webm"
        assert request["content_type"] == "audio/webm"
        assert request["payload"] == b"\x1aE\xdf\xa3chunk"
        assert request["model"] == "whisper-large-v3"
        assert request["language"] == "en"
        assert request["response_format"] == "json"

    async def test_alternate_text_field(self, backend, client):
        backend["reply"] = (200, {"transcript": "from relay"})

        outcome = await client.submit(make_chunk())

        assert outcome.is_text
        assert outcome.text == "from relay"

    async def test_blank_text_is_empty(self, backend, client):
        backend["reply"] = (200, {"text": "   "})

        outcome = await client.submit(make_chunk())

        assert outcome.is_empty

    async def test_non_json_success_is_rejected(self, backend, client):
        backend["reply"] = (200, "not json")

        outcome = await client.submit(make_chunk())

        assert outcome.is_rejected
        assert outcome.reason == "malformed_response"

    async def test_format_error_is_rejected(self, backend, client):
        backend["reply"] = (400, {"error": {"message": "could not process file"}})

        outcome = await client.submit(make_chunk())

        assert outcome.is_rejected
        assert outcome.reason == "unsupported_format"
        assert outcome.status == 400

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failure_is_unavailable(self, backend, client, status):
        backend["reply"] = (status, {"error": "Invalid API key"})

        outcome = await client.submit(make_chunk())

        assert outcome.is_unavailable
        assert outcome.reason == "Invalid API key"

    async def test_relay_not_configured_is_unavailable(self, backend, client):
        backend["reply"] = (503, {"error": "Transcription service not configured"})

        outcome = await client.submit(make_chunk())

        assert outcome.is_unavailable

    async def test_server_error_is_rejected(self, backend, client):
        backend["reply"] = (500, "boom")

        outcome = await client.submit(make_chunk())

        assert outcome.is_rejected
        assert outcome.reason == "http_500"

    async def test_timeout_is_rejected(self, backend):
        backend["delay"] = 1.0
        client = TranscriptionRelayClient(endpoint=backend["url"], timeout_seconds=0.2)
        await client.connect()
        try:
            outcome = await client.submit(make_chunk())
        finally:
            await client.disconnect()

        assert outcome.is_rejected
        assert outcome.reason == "timeout"

    async def test_network_error_is_rejected(self):
        client = TranscriptionRelayClient(endpoint="http://127.0.0.1:1/transcribe")
        await client.connect()
        try:
            outcome = await client.submit(make_chunk())
        finally:
            await client.disconnect()

        assert outcome.is_rejected
        assert outcome.reason == "network_error"

    async def test_submit_without_session_is_rejected(self, backend):
        client = TranscriptionRelayClient(endpoint=backend["url"])

        outcome = await client.submit(make_chunk())

        assert outcome.is_rejected
        assert outcome.reason == "not_connected"
        assert backend["requests"] == []

    async def test_health_check(self, client):
        assert await client.health_check() is True
        await client.disconnect()
        assert await client.health_check() is False


@pytest.mark.unit
class TestMockTranscriptionRelayClient:
    """Test the scripted relay used in tests."""

    async def test_scripted_then_default(self):
        relay = MockTranscriptionRelayClient()
        await relay.connect()
        relay.queue_outcomes(TranscriptionOutcome.of_text("one"), TranscriptionOutcome.empty())
        relay.set_default_outcome(TranscriptionOutcome.rejected("http_500"))

        outcomes = [await relay.submit(make_chunk(i), language="de-DE") for i in range(3)]

        assert [o.kind for o in outcomes] == [
            OutcomeKind.TEXT,
            OutcomeKind.EMPTY,
            OutcomeKind.REJECTED,
        ]
        assert relay.submitted_sequences() == [0, 1, 2]
        assert relay.languages == ["de-DE"] * 3

    async def test_disconnected_rejects(self):
        relay = MockTranscriptionRelayClient()

        outcome = await relay.submit(make_chunk())

        assert outcome.reason == "not_connected"

    async def test_reset(self):
        relay = MockTranscriptionRelayClient()
        await relay.connect()
        relay.queue_outcomes(TranscriptionOutcome.of_text("one"))
        await relay.submit(make_chunk())

        relay.reset()

        assert relay.submitted == []
        assert (await relay.submit(make_chunk())).is_empty
