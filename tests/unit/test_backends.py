"""
Unit tests for the aiohttp backend clients.

Each test talks to a real aiohttp.web application on a local port, so
request bodies, headers and error mapping are exercised end to end.
"""

import base64
from typing import Any, Dict, List, Tuple

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from voiceturn.backends import (
    BackendClients,
    ReasoningClient,
    SynthesisClient,
    TranscriptionClient,
)
from voiceturn.config import BackendConfig, PlaybackConfig
from voiceturn.exceptions import (
    NoSpeechDetected,
    ReplyUnavailable,
    SynthesisFailed,
    TranscriptionFailed,
)
from voiceturn.session import Speaker, Utterance

from tests.fixtures.mock_backends import AUDIO_PAYLOAD

DEFAULT_RESPONSES: Dict[str, Any] = {
    "reasoning": {"reply": "  Happy to help.  "},
    "transcription": {"text": "  hello there "},
    "synthesis": AUDIO_PAYLOAD,
}


class FakeBackend:
    """Scripted aiohttp application standing in for the remote functions."""

    def __init__(self):
        self.responses: Dict[str, Tuple[int, Any]] = {}
        self.requests: List[Tuple[str, Any, Dict[str, str]]] = []
        self.base_url = ""

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/ai-assistant", self._handler("reasoning"))
        app.router.add_post("/voice-to-text", self._handler("transcription"))
        app.router.add_post("/text-to-speech", self._handler("synthesis"))
        return app

    def respond(self, name: str, body: Any, status: int = 200) -> None:
        self.responses[name] = (status, body)

    def _handler(self, name: str):
        async def handler(request: web.Request) -> web.StreamResponse:
            self.requests.append((name, await request.json(), dict(request.headers)))
            status, body = self.responses.get(name, (200, DEFAULT_RESPONSES[name]))
            if isinstance(body, bytes):
                return web.Response(
                    status=status, body=body, content_type="application/octet-stream"
                )
            if isinstance(body, str):
                return web.Response(status=status, text=body)
            return web.json_response(body, status=status)

        return handler


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def config(backend) -> BackendConfig:
    return BackendConfig(base_url=backend.base_url, api_key="test-key", system_message="Be brief.")


# =============================================================================
# Reasoning
# =============================================================================

class TestReasoningClient:
    """Tests for ReasoningClient.reply."""

    @pytest.mark.asyncio
    async def test_reply(self, backend, config):
        client = ReasoningClient(config)
        history = [Utterance(Speaker.ASSISTANT, "Hi"), Utterance(Speaker.USER, "Hello")]
        try:
            reply = await client.reply("What time is it?", history)
        finally:
            await client.close()

        assert reply == "Happy to help."
        name, body, headers = backend.requests[0]
        assert body == {
            "text": "What time is it?",
            "history": [
                {"speaker": "assistant", "text": "Hi"},
                {"speaker": "user", "text": "Hello"},
            ],
            "system": "Be brief.",
        }
        assert headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_server_error(self, backend, config):
        backend.respond("reasoning", {"error": "overloaded"}, status=503)
        client = ReasoningClient(config)
        try:
            with pytest.raises(ReplyUnavailable) as exc_info:
                await client.reply("hi")
        finally:
            await client.close()
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_error_field(self, backend, config):
        backend.respond("reasoning", {"error": "quota"})
        client = ReasoningClient(config)
        try:
            with pytest.raises(ReplyUnavailable, match="quota"):
                await client.reply("hi")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_malformed_body(self, backend, config):
        backend.respond("reasoning", "not json at all")
        client = ReasoningClient(config)
        try:
            with pytest.raises(ReplyUnavailable):
                await client.reply("hi")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        client = ReasoningClient(BackendConfig(base_url="http://127.0.0.1:9", timeout=2))
        try:
            with pytest.raises(ReplyUnavailable):
                await client.reply("hi")
        finally:
            await client.close()


# =============================================================================
# Transcription
# =============================================================================

class TestTranscriptionClient:
    """Tests for TranscriptionClient.transcribe."""

    @pytest.mark.asyncio
    async def test_transcribe(self, backend, config):
        client = TranscriptionClient(config)
        try:
            text = await client.transcribe(AUDIO_PAYLOAD, "ar")
        finally:
            await client.close()

        assert text == "hello there"
        _, body, _ = backend.requests[0]
        assert base64.b64decode(body["audio"]) == AUDIO_PAYLOAD
        assert body["language"] == "ar"

    @pytest.mark.asyncio
    async def test_tiny_payload_not_sent(self, backend, config):
        client = TranscriptionClient(config)
        with pytest.raises(NoSpeechDetected):
            await client.transcribe(b"\x00" * 100, "ar")
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_unprocessable_is_no_speech(self, backend, config):
        backend.respond("transcription", {"error": "no speech"}, status=422)
        client = TranscriptionClient(config)
        try:
            with pytest.raises(NoSpeechDetected):
                await client.transcribe(AUDIO_PAYLOAD, "ar")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_no_speech_error_field(self, backend, config):
        backend.respond("transcription", {"error": "no_speech"})
        client = TranscriptionClient(config)
        try:
            with pytest.raises(NoSpeechDetected):
                await client.transcribe(AUDIO_PAYLOAD, "ar")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_server_error(self, backend, config):
        backend.respond("transcription", "upstream down", status=500)
        client = TranscriptionClient(config)
        try:
            with pytest.raises(TranscriptionFailed) as exc_info:
                await client.transcribe(AUDIO_PAYLOAD, "ar")
        finally:
            await client.close()
        assert exc_info.value.status == 500
        assert "upstream down" in str(exc_info.value)


# =============================================================================
# Synthesis
# =============================================================================

class TestSynthesisClient:
    """Tests for buffered and streamed synthesis."""

    @pytest.mark.asyncio
    async def test_raw_audio(self, backend, config):
        client = SynthesisClient(config, PlaybackConfig(voice_id="voice-1"))
        try:
            audio = await client.synthesize("Hello")
        finally:
            await client.close()

        assert audio == AUDIO_PAYLOAD
        _, body, _ = backend.requests[0]
        assert body == {"text": "Hello", "voice": "voice-1", "stream": False, "format": "pcm_16000"}

    @pytest.mark.asyncio
    async def test_json_audio(self, backend, config):
        backend.respond("synthesis", {"audio": base64.b64encode(b"\x01\x02").decode()})
        client = SynthesisClient(config)
        try:
            assert await client.synthesize("Hello") == b"\x01\x02"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_bad_base64(self, backend, config):
        backend.respond("synthesis", {"audio": "%%%not-base64"})
        client = SynthesisClient(config)
        try:
            with pytest.raises(SynthesisFailed):
                await client.synthesize("Hello")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_empty_audio(self, backend, config):
        backend.respond("synthesis", b"")
        client = SynthesisClient(config)
        try:
            with pytest.raises(SynthesisFailed, match="no audio"):
                await client.synthesize("Hello")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_stream(self, backend, config):
        client = SynthesisClient(config)
        try:
            chunks = [chunk async for chunk in client.stream("Hello")]
        finally:
            await client.close()

        assert b"".join(chunks) == AUDIO_PAYLOAD
        assert backend.requests[0][1]["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_error(self, backend, config):
        backend.respond("synthesis", {"error": "voice not found"}, status=404)
        client = SynthesisClient(config)
        try:
            with pytest.raises(SynthesisFailed) as exc_info:
                async for _ in client.stream("Hello"):
                    pass
        finally:
            await client.close()
        assert exc_info.value.status == 404


class TestBackendClients:
    """Tests for the shared-session bundle."""

    @pytest.mark.asyncio
    async def test_shared_session(self, backend, config):
        async with BackendClients(config) as clients:
            session = clients.reasoning._session
            assert session is clients.transcription._session is clients.synthesis._session
            assert await clients.reasoning.reply("hi") == "Happy to help."
            assert await clients.transcription.transcribe(AUDIO_PAYLOAD, "en") == "hello there"
        assert session.closed
