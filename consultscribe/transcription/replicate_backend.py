"""Replicate whisper-diarization transcription backend."""

import asyncio
import base64
import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from .base import AbstractTranscriptionBackend
from ..exceptions import TranscriptionError
from ..models.recording import AudioBlob
from ..models.transcript import DiarizedTranscript

logger = logging.getLogger(__name__)

WHISPER_DIARIZATION_VERSION = "1495a9cddc83b2203b0d8d3516e38b80fd1572ebc4bc5700ac1da56a9b3ed886"

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


class ReplicateDiarizationBackend(AbstractTranscriptionBackend):
    """Transcribes recordings with thomasmol/whisper-diarization on Replicate."""

    def __init__(self,
                 api_token: str,
                 model_version: str = WHISPER_DIARIZATION_VERSION,
                 language: str = "es",
                 num_speakers: int = 2,
                 group_segments: bool = True,
                 prompt: str = "",
                 base_url: str = "https://api.replicate.com/v1",
                 poll_interval: float = 1.0,
                 timeout: float = 600.0):
        """Initialize Replicate backend.

        Args:
            api_token: Replicate API token
            model_version: whisper-diarization model version hash
            language: Spoken language code passed to Whisper
            num_speakers: Expected number of speakers
            group_segments: Merge consecutive segments of the same speaker
            prompt: Initial prompt for Whisper (e.g. vocabulary hints)
            base_url: Replicate API base URL
            poll_interval: Seconds between prediction status polls
            timeout: Overall deadline for one transcription in seconds
        """
        super().__init__(language)
        if not api_token:
            raise ValueError("Replicate API token is required")
        self.api_token = api_token
        self.model_version = model_version
        self.num_speakers = num_speakers
        self.group_segments = group_segments
        self.prompt = prompt
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout

        logger.info(f"ReplicateDiarizationBackend initialized: language={language}, speakers={num_speakers}")

    def _build_input(self, audio_blob: AudioBlob) -> Dict[str, Any]:
        encoded = base64.b64encode(audio_blob.data).decode("ascii")
        return {
            "file": f"data:{audio_blob.mime_type};base64,{encoded}",
            "language": self.language,
            "num_speakers": self.num_speakers,
            "group_segments": self.group_segments,
            "translate": False,
            "prompt": self.prompt,
        }

    async def transcribe(self, audio_blob: AudioBlob) -> DiarizedTranscript:
        """Transcribe audio with speaker diarization."""
        logger.info(f"Sending {audio_blob.size_bytes / 1024:.2f} KB of audio to Replicate")

        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }
        payload = {
            "version": self.model_version,
            "input": self._build_input(audio_blob),
        }

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
                prediction = await self._request(session, "POST", f"{self.base_url}/predictions", json=payload)
                prediction = await self._wait_for_prediction(session, prediction)
        except aiohttp.ClientError as e:
            logger.error(f"Transcription request failed: {e}")
            raise TranscriptionError(f"Transcription request failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error("Transcription request timed out")
            raise TranscriptionError("Transcription timed out") from e

        transcript = self._parse_output(prediction.get("output"))
        logger.info(f"Transcription completed: language={transcript.language}, "
                    f"speakers={transcript.num_speakers}, segments={len(transcript.segments)}")
        return transcript

    async def _request(self, session: aiohttp.ClientSession, method: str, url: str,
                       json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with session.request(method, url, json=json) as response:
            if response.status == 401:
                raise TranscriptionError("Invalid Replicate API token. Please check your configuration.")
            if response.status == 429:
                raise TranscriptionError("Rate limit exceeded. Please try again in a moment.")
            if response.status >= 300:
                error_text = await response.text()
                raise TranscriptionError(f"Replicate API error: {response.status} - {error_text}")
            return await response.json()

    async def _wait_for_prediction(self, session: aiohttp.ClientSession,
                                   prediction: Dict[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        while prediction.get("status") not in TERMINAL_STATUSES:
            if loop.time() >= deadline:
                raise TranscriptionError("Transcription timed out")
            await asyncio.sleep(self.poll_interval)

            poll_url = (prediction.get("urls") or {}).get("get") or f"{self.base_url}/predictions/{prediction.get('id')}"
            logger.debug(f"Polling prediction {prediction.get('id')} (status={prediction.get('status')})")
            prediction = await self._request(session, "GET", poll_url)

        status = prediction.get("status")
        if status == "failed":
            raise TranscriptionError(prediction.get("error") or "Transcription failed")
        if status == "canceled":
            raise TranscriptionError("Transcription was canceled")
        return prediction

    def _parse_output(self, output: Any) -> DiarizedTranscript:
        if not isinstance(output, dict) or "segments" not in output:
            logger.error(f"Invalid output from Replicate: {str(output)[:200]}")
            raise TranscriptionError("Invalid response from transcription service")
        try:
            return DiarizedTranscript.model_validate(output)
        except ValidationError as e:
            logger.error(f"Malformed transcription output: {e}")
            raise TranscriptionError("Invalid response from transcription service") from e
