"""
VOICETURN Remote Backends

aiohttp clients for the three remote services of a call:

    ReasoningClient       {"text", "history", "system"} -> {"reply"}
    TranscriptionClient   {"audio": base64, "language"} -> {"text"}
    SynthesisClient       {"text", "voice", "stream", "format"}
                          -> audio bytes, a chunked byte stream, or
                             {"audio": base64}

Every client maps transport errors, timeouts, non-2xx statuses and
malformed bodies onto the voiceturn exception taxonomy so callers never see
aiohttp exceptions.

Usage:
    async with BackendClients(config.backend, config.playback) as clients:
        text = await clients.transcription.transcribe(payload, "ar")
        reply = await clients.reasoning.reply(text)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp

from voiceturn.config import BackendConfig, PlaybackConfig
from voiceturn.exceptions import (
    NoSpeechDetected,
    ReplyUnavailable,
    SynthesisFailed,
    TranscriptionFailed,
)
from voiceturn.logging_config import get_logger
from voiceturn.session import Utterance

logger = get_logger(__name__)

__all__ = [
    "BackendClient",
    "ReasoningClient",
    "TranscriptionClient",
    "SynthesisClient",
    "BackendClients",
    "MIN_TRANSCRIPTION_BYTES",
]

MIN_TRANSCRIPTION_BYTES = 500
STREAM_CHUNK_SIZE = 4096
USER_AGENT = "voiceturn/0.1"


class BackendClient:
    """Shared session handling for one backend endpoint."""

    def __init__(
        self,
        config: BackendConfig,
        path: str,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.url = f"{config.base_url}{path}"
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"User-Agent": USER_AGENT}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @staticmethod
    async def _error_text(response: aiohttp.ClientResponse) -> str:
        try:
            body = await response.text()
        except (aiohttp.ClientError, UnicodeDecodeError):
            return ""
        return body[:200]


class ReasoningClient(BackendClient):
    """Turns a user transcript into the assistant's reply."""

    def __init__(
        self,
        config: BackendConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(config, config.reasoning_path, session)

    async def reply(self, text: str, history: Optional[Sequence[Utterance]] = None) -> str:
        """
        Request a reply.

        Args:
            text: User transcript
            history: Earlier utterances of this session, oldest first

        Returns:
            Reply text, stripped; empty when the backend had nothing to say

        Raises:
            ReplyUnavailable: transport error, timeout, bad status or body
        """
        payload: Dict[str, Any] = {"text": text}
        if history:
            payload["history"] = [
                {"speaker": u.speaker.value, "text": u.text} for u in history
            ]
        if self.config.system_message:
            payload["system"] = self.config.system_message

        try:
            session = await self._get_session()
            async with session.post(self.url, json=payload) as response:
                if response.status >= 400:
                    detail = await self._error_text(response)
                    raise ReplyUnavailable(
                        f"Reasoning backend error: {detail or response.reason}",
                        status=response.status,
                        endpoint=self.url,
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Reasoning request failed: {e}")
            raise ReplyUnavailable(
                f"Reasoning request failed: {e}", endpoint=self.url
            ) from e

        if not isinstance(data, dict) or not isinstance(data.get("reply", ""), str):
            raise ReplyUnavailable("Malformed reasoning response", endpoint=self.url)
        if data.get("error"):
            raise ReplyUnavailable(f"Reasoning backend error: {data['error']}", endpoint=self.url)

        reply = (data.get("reply") or "").strip()
        logger.debug(f"Reply received ({len(reply)} chars)")
        return reply


class TranscriptionClient(BackendClient):
    """Speech-to-text over HTTP."""

    def __init__(
        self,
        config: BackendConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(config, config.transcription_path, session)

    async def transcribe(self, audio: bytes, language: str) -> str:
        """
        Transcribe one captured payload.

        Raises:
            NoSpeechDetected: payload too small or backend found no speech
            TranscriptionFailed: any other failure
        """
        if len(audio) < MIN_TRANSCRIPTION_BYTES:
            raise NoSpeechDetected(
                f"Audio payload too small ({len(audio)} bytes)", language=language
            )

        payload = {
            "audio": base64.b64encode(audio).decode("ascii"),
            "language": language,
        }
        try:
            session = await self._get_session()
            async with session.post(self.url, json=payload) as response:
                if response.status == 422:
                    raise NoSpeechDetected(
                        "No speech detected", language=language, status=response.status
                    )
                if response.status >= 400:
                    detail = await self._error_text(response)
                    raise TranscriptionFailed(
                        f"Transcription backend error: {detail or response.reason}",
                        language=language,
                        status=response.status,
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Transcription request failed: {e}")
            raise TranscriptionFailed(
                f"Transcription request failed: {e}", language=language
            ) from e

        if not isinstance(data, dict):
            raise TranscriptionFailed("Malformed transcription response", language=language)
        error = data.get("error")
        if error == "no_speech":
            raise NoSpeechDetected("No speech detected", language=language)
        if error:
            raise TranscriptionFailed(f"Transcription backend error: {error}", language=language)

        text = data.get("text") or ""
        if not isinstance(text, str):
            raise TranscriptionFailed("Malformed transcription response", language=language)
        return text.strip()


class SynthesisClient(BackendClient):
    """Text-to-speech over HTTP, buffered or streamed."""

    def __init__(
        self,
        config: BackendConfig,
        playback: Optional[PlaybackConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(config, config.synthesis_path, session)
        self.playback = playback or PlaybackConfig()

    def _payload(self, text: str, stream: bool) -> Dict[str, Any]:
        return {
            "text": text,
            "voice": self.playback.voice_id,
            "stream": stream,
            "format": self.playback.output_format,
        }

    async def synthesize(self, text: str) -> bytes:
        """Return the complete audio payload for text.

        Raises:
            SynthesisFailed: transport error, bad status or empty audio
        """
        try:
            session = await self._get_session()
            async with session.post(self.url, json=self._payload(text, False)) as response:
                if response.status >= 400:
                    detail = await self._error_text(response)
                    raise SynthesisFailed(
                        f"Synthesis backend error: {detail or response.reason}",
                        voice=self.playback.voice_id,
                        status=response.status,
                    )
                if response.content_type == "application/json":
                    data = await response.json()
                    audio = self._decode_json_audio(data)
                else:
                    audio = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Synthesis request failed: {e}")
            raise SynthesisFailed(
                f"Synthesis request failed: {e}", voice=self.playback.voice_id
            ) from e

        if not audio:
            raise SynthesisFailed("Synthesis returned no audio", voice=self.playback.voice_id)
        logger.debug(f"Synthesized {len(audio)} bytes")
        return audio

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        """Yield audio chunks as the backend produces them.

        Raises:
            SynthesisFailed: transport error or bad status, at any point
        """
        try:
            session = await self._get_session()
            async with session.post(self.url, json=self._payload(text, True)) as response:
                if response.status >= 400:
                    detail = await self._error_text(response)
                    raise SynthesisFailed(
                        f"Synthesis backend error: {detail or response.reason}",
                        voice=self.playback.voice_id,
                        status=response.status,
                    )
                async for chunk in response.content.iter_chunked(STREAM_CHUNK_SIZE):
                    yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Synthesis stream failed: {e}")
            raise SynthesisFailed(
                f"Synthesis stream failed: {e}", voice=self.playback.voice_id
            ) from e

    def _decode_json_audio(self, data: Any) -> bytes:
        if not isinstance(data, dict) or not isinstance(data.get("audio"), str):
            error = data.get("error") if isinstance(data, dict) else None
            raise SynthesisFailed(
                f"Malformed synthesis response{': ' + str(error) if error else ''}",
                voice=self.playback.voice_id,
            )
        try:
            return base64.b64decode(data["audio"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise SynthesisFailed(
                f"Invalid base64 audio: {e}", voice=self.playback.voice_id
            ) from e


class BackendClients:
    """The three clients sharing one aiohttp session."""

    def __init__(
        self,
        config: BackendConfig,
        playback: Optional[PlaybackConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.reasoning = ReasoningClient(config, session)
        self.transcription = TranscriptionClient(config, session)
        self.synthesis = SynthesisClient(config, playback, session)

    async def open(self) -> "BackendClients":
        if self._session is None:
            headers = {"User-Agent": USER_AGENT}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
            for client in self._clients():
                client._session = self._session
                client._owns_session = False
        return self

    async def close(self) -> None:
        for client in self._clients():
            await client.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _clients(self) -> List[BackendClient]:
        return [self.reasoning, self.transcription, self.synthesis]

    async def __aenter__(self) -> "BackendClients":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
