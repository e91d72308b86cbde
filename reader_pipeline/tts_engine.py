from __future__ import annotations

import asyncio
import base64
import io
import logging
import mimetypes
import os
from abc import ABC, abstractmethod
from typing import Collection, Dict, Mapping, Optional, Tuple

from pydub import AudioSegment

from .errors import AuthMissingError, ProviderError

logger = logging.getLogger(__name__)

__all__ = [
    "TtsEngine",
    "OpenAITtsEngine",
    "PollyTtsEngine",
    "GoogleGenAITtsEngine",
    "MockTtsEngine",
    "OPENAI_VOICES",
]

OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class TtsEngine(ABC):
    """
    Thin abstraction over a remote text-to-speech provider.

    ``synthesize`` performs exactly one provider call and returns the encoded audio in
    ``audio_format``. It never retries; failures are raised as ``SynthesisError``
    subclasses so the orchestrator can fold them into a single conversion result.
    """

    voices: Optional[Tuple[str, ...]] = None

    def __init__(self, *, audio_format: str = "wav", speed: float = 1.0) -> None:
        self.audio_format = audio_format
        self.speed = speed

    @abstractmethod
    async def synthesize(self, text: str, voice: str) -> bytes:
        """
        Convert text into encoded audio bytes for ``voice``.
        """

    def descriptor(self) -> str:
        return self.__class__.__name__

    def _validate_voice(self, voice: str) -> None:
        if self.voices is not None and voice not in self.voices:
            raise ProviderError(
                f"Engine {self.descriptor()} does not support voice {voice!r} "
                f"(expected one of {', '.join(self.voices)})."
            )


class OpenAITtsEngine(TtsEngine):
    """
    OpenAI speech endpoint through the async ``openai`` client.
    """

    voices = OPENAI_VOICES

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "tts-1-hd",
        audio_format: str = "aac",
        speed: float = 1.0,
        timeout: Optional[float] = None,
        client: Optional[object] = None,
    ) -> None:
        super().__init__(audio_format=audio_format, speed=speed)
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._model = model
        self._timeout = timeout
        self._client = client

    def descriptor(self) -> str:
        return f"{self.__class__.__name__}({self._model})"

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise AuthMissingError(
                    "OpenAI engine requires an API key (use --api-key or OPENAI_API_KEY env var)."
                )
            import openai

            self._client = openai.AsyncOpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def synthesize(self, text: str, voice: str) -> bytes:
        self._validate_voice(voice)
        client = self._get_client()

        import openai

        logger.debug(
            "OpenAI speech request: model=%s voice=%s format=%s speed=%.2f chars=%d",
            self._model,
            voice,
            self.audio_format,
            self.speed,
            len(text),
        )
        try:
            response = await client.audio.speech.create(
                model=self._model,
                voice=voice,
                input=text,
                response_format=self.audio_format,
                speed=self.speed,
            )
        except openai.APITimeoutError as exc:
            raise ProviderError(f"OpenAI speech request timed out: {exc}") from exc
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI speech request failed: {exc}") from exc

        audio_bytes = response.content
        if not audio_bytes:
            raise ProviderError("OpenAI returned an empty audio payload.")
        return audio_bytes


class MockTtsEngine(TtsEngine):
    """
    Lightweight mock for tests and dry runs. Generates silent WAV audio of predictable
    length.

    ``delays`` (seconds) reorder completion, ``failures`` raise ``ProviderError`` and
    ``corrupt`` return bytes that do not parse as audio.
    """

    def __init__(
        self,
        durations_ms: Optional[Dict[str, int]] = None,
        *,
        base_duration_ms: int = 500,
        per_char_ms: int = 30,
        sample_rate: int = 22050,
        delays: Optional[Mapping[str, float]] = None,
        failures: Collection[str] = (),
        corrupt: Collection[str] = (),
    ) -> None:
        super().__init__(audio_format="wav")
        self._durations_ms = durations_ms or {}
        self._base_duration_ms = base_duration_ms
        self._per_char_ms = per_char_ms
        self._sample_rate = sample_rate
        self._delays = dict(delays or {})
        self._failures = set(failures)
        self._corrupt = set(corrupt)
        self.calls: list = []

    async def synthesize(self, text: str, voice: str) -> bytes:
        self.calls.append(text)
        delay = self._delays.get(text, 0.0)
        if delay:
            await asyncio.sleep(delay)
        if text in self._failures:
            raise ProviderError(f"Mock provider rejected text: {text[:30]}")
        if text in self._corrupt:
            return b"not really audio"

        duration = self._durations_ms.get(
            text, self._base_duration_ms + max(0, len(text)) * self._per_char_ms
        )
        segment = AudioSegment.silent(duration=duration, frame_rate=self._sample_rate)
        return _segment_to_bytes(segment, "wav")


class PollyTtsEngine(TtsEngine):
    """
    Amazon Polly implementation. The blocking boto3 call runs in a worker thread.
    """

    def __init__(
        self,
        *,
        engine: str = "neural",
        language_code: Optional[str] = None,
        sample_rate: int = 22050,
        output_format: str = "pcm",
        boto3_client: Optional[object] = None,
        text_type: str = "text",
    ) -> None:
        super().__init__(audio_format="wav" if output_format.lower() == "pcm" else output_format)
        try:
            import boto3  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "boto3 is required for PollyTtsEngine but is not installed."
            ) from exc

        self._client = boto3_client or boto3.client("polly")
        self._engine = engine
        self._language_code = language_code
        self._sample_rate = sample_rate
        self._output_format = output_format
        self._text_type = text_type

    async def synthesize(self, text: str, voice: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

        params = {
            "Engine": self._engine,
            "VoiceId": voice,
            "OutputFormat": self._output_format,
            "SampleRate": str(self._sample_rate),
            "Text": text,
            "TextType": self._text_type,
        }
        if self._language_code:
            params["LanguageCode"] = self._language_code

        logger.debug("Polly request params: %s", {k: v for k, v in params.items() if k != "Text"})
        try:
            response = await asyncio.to_thread(self._client.synthesize_speech, **params)  # type: ignore[attr-defined]
            stream = response.get("AudioStream")
            audio_bytes = stream.read() if hasattr(stream, "read") else stream
        except NoCredentialsError as exc:
            raise AuthMissingError("Polly requires AWS credentials.") from exc
        except (BotoCoreError, ClientError) as exc:
            raise ProviderError(f"Polly request failed: {exc}") from exc

        if not audio_bytes:
            raise ProviderError("Polly returned empty audio stream.")

        if self._output_format.lower() == "pcm":
            segment = AudioSegment(
                data=audio_bytes,
                sample_width=2,
                frame_rate=self._sample_rate,
                channels=1,
            )
            return _segment_to_bytes(segment, "wav")
        return audio_bytes


class GoogleGenAITtsEngine(TtsEngine):
    """
    Google Generative AI TTS implementation using the async ``google-genai`` client.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-pro-preview-tts",
        sample_rate: int = 24000,
        audio_mime_type: str = "audio/wav",
        language_code: Optional[str] = None,
        client: Optional[object] = None,
    ) -> None:
        try:
            from google import genai  # type: ignore
            from google.genai import types  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "google-genai is required for GoogleGenAITtsEngine but is not installed."
            ) from exc

        super().__init__(audio_format="wav")
        self._api_key = (
            api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_GENAI_API_KEY")
        )
        self._genai = genai
        self._client = client
        self._types = types
        self._model = model
        self._sample_rate = sample_rate
        self._language_code = language_code
        self._mime_type = audio_mime_type

    def descriptor(self) -> str:
        return f"{self.__class__.__name__}({self._model})"

    async def synthesize(self, text: str, voice: str) -> bytes:
        if self._client is None:
            if not self._api_key:
                raise AuthMissingError(
                    "Google GenAI engine requires an API key (use --api-key or GEMINI_API_KEY env var)."
                )
            self._client = self._genai.Client(api_key=self._api_key)

        types = self._types
        content = types.Content(role="user", parts=[types.Part.from_text(text=text)])
        speech_config = types.SpeechConfig(
            language_code=self._language_code,
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
            ),
        )
        generate_config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=speech_config,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=[content],
                config=generate_config,
            )
        except Exception as exc:
            raise ProviderError(f"Google GenAI request failed: {exc}") from exc

        audio_chunks = []
        mime_type: Optional[str] = None
        for candidate in response.candidates or []:
            if not candidate.content or not candidate.content.parts:
                continue
            for response_part in candidate.content.parts:
                inline = getattr(response_part, "inline_data", None)
                if inline and inline.data:
                    mime_type = inline.mime_type or mime_type
                    data = inline.data
                    if isinstance(data, str):
                        data = base64.b64decode(data)
                    audio_chunks.append(data)

        if not audio_chunks:
            raise ProviderError("Google GenAI returned no audio data.")

        audio_bytes = b"".join(audio_chunks)
        mime = mime_type or self._mime_type
        try:
            return await asyncio.to_thread(self._to_wav, audio_bytes, mime)
        except Exception as exc:
            raise ProviderError(f"Google GenAI returned undecodable {mime} audio: {exc}") from exc

    def _to_wav(self, audio_bytes: bytes, mime: str) -> bytes:
        segment = _audio_bytes_to_segment(audio_bytes, mime, default_rate=self._sample_rate)
        return _segment_to_bytes(segment, "wav")


def _segment_to_bytes(segment: AudioSegment, fmt: str) -> bytes:
    buffer = io.BytesIO()
    segment.export(buffer, format=fmt)
    return buffer.getvalue()


def _audio_bytes_to_segment(data: bytes, mime_type: str, *, default_rate: int) -> AudioSegment:
    mime_type = mime_type or "audio/wav"
    if mime_type.startswith("audio/L"):
        params = _parse_linear_pcm_mime(mime_type, default_rate=default_rate)
        return AudioSegment(
            data=data,
            sample_width=params["sample_width"],
            frame_rate=params["rate"],
            channels=params["channels"],
        )

    guessed = (mimetypes.guess_extension(mime_type) or "").lstrip(".")
    fmt = guessed or mime_type.split("/")[-1]
    return AudioSegment.from_file(io.BytesIO(data), format=fmt)


def _parse_linear_pcm_mime(mime_type: str, *, default_rate: int = 24000) -> Dict[str, int]:
    params: Dict[str, int] = {"rate": default_rate, "sample_width": 2, "channels": 1}
    fragments = [fragment.strip() for fragment in mime_type.split(";")]
    for fragment in fragments:
        if fragment.lower().startswith("rate="):
            try:
                params["rate"] = int(fragment.split("=", 1)[1])
            except ValueError:
                logger.warning("Unable to parse rate from mime type %s", mime_type)
        elif fragment.lower().startswith("channels="):
            try:
                params["channels"] = int(fragment.split("=", 1)[1])
            except ValueError:
                logger.warning("Unable to parse channels from mime type %s", mime_type)
        elif fragment.lower().startswith("audio/l"):
            try:
                bits = int(fragment.split("L", 1)[1])
                params["sample_width"] = max(1, bits // 8)
            except ValueError:
                logger.warning("Unable to parse bits from mime type %s", mime_type)
    return params
