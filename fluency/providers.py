"""Hosted transcription, speech synthesis and tone analysis providers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Protocol

import openai
from openai import OpenAI

from .errors import InvalidResponse, NoCredential, RemoteError, TransportError
from .keystore import SecretStore

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

TONE_PROMPT = """\
You are an expert audio director. Analyze the following text and provide concise "Director's Notes" for a TTS AI to read it aloud.
Focus on: Style, Pace, and Tone.
Format your response as a single concise string.
Example: "Style: Joyful and upbeat. Pace: Brisk. Tone: Warm."
Do NOT output anything else.
"""

ClientFactory = Callable[[str], Any]


class TranscriptionProvider(Protocol):
    def transcribe(self, audio: bytes, filename: str = "audio.m4a") -> str:
        """Return the transcript for the given audio bytes."""


class SpeechProvider(Protocol):
    def synthesize(self, text: str, voice: Optional[str] = None, instructions: Optional[str] = None) -> Iterator[bytes]:
        """Return an iterator over encoded audio chunks."""


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map SDK exceptions onto the fluency provider taxonomy."""
    try:
        yield
    except openai.APIStatusError as exc:
        raise RemoteError(exc.message, exc.status_code) from exc
    except openai.APIConnectionError as exc:
        raise TransportError(exc) from exc
    except openai.APIResponseValidationError as exc:
        raise InvalidResponse(str(exc)) from exc


class _KeyedClient:
    secret_name = "openai"

    def __init__(self, secrets: SecretStore, client_factory: Optional[ClientFactory] = None) -> None:
        self._secrets = secrets
        self._client_factory = client_factory or self._default_factory

    def _default_factory(self, api_key: str) -> OpenAI:
        return OpenAI(api_key=api_key)

    def _client(self) -> Any:
        api_key = self._secrets.get(self.secret_name)
        if not api_key:
            raise NoCredential(self.secret_name)
        return self._client_factory(api_key)


class OpenAITranscriber(_KeyedClient):
    """Cloud transcription using the OpenAI audio API."""

    def __init__(
        self,
        secrets: SecretStore,
        model: str = "gpt-4o-mini-transcribe",
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        super().__init__(secrets, client_factory)
        self.model = model

    def transcribe(self, audio: bytes, filename: str = "audio.m4a") -> str:
        client = self._client()
        with translate_errors():
            response = client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio),
                response_format="text",
            )
        text = response if isinstance(response, str) else getattr(response, "text", None)
        if not isinstance(text, str):
            raise InvalidResponse()
        return text.strip()


class OpenAISpeech(_KeyedClient):
    """Text to speech using the OpenAI speech endpoint, streamed as mp3."""

    def __init__(
        self,
        secrets: SecretStore,
        model: str = "gpt-4o-mini-tts",
        voice: str = "alloy",
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        super().__init__(secrets, client_factory)
        self.model = model
        self.voice = voice

    def synthesize(self, text: str, voice: Optional[str] = None, instructions: Optional[str] = None) -> Iterator[bytes]:
        client = self._client()
        options = {"model": self.model, "voice": voice or self.voice, "input": text, "response_format": "mp3"}
        if instructions:
            options["instructions"] = instructions
        return self._stream(client, options)

    def _stream(self, client: Any, options: dict) -> Iterator[bytes]:
        with translate_errors():
            with client.audio.speech.with_streaming_response.create(**options) as response:
                yield from response.iter_bytes()


class ToneAnalyzer(_KeyedClient):
    """Produce short style instructions for speech synthesis via Groq."""

    secret_name = "groq"

    def __init__(
        self,
        secrets: SecretStore,
        model: str = "moonshotai/kimi-k2-instruct-0905",
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        super().__init__(secrets, client_factory)
        self.model = model

    def _default_factory(self, api_key: str) -> OpenAI:
        return OpenAI(api_key=api_key, base_url=GROQ_BASE_URL)

    def analyze(self, text: str) -> str:
        client = self._client()
        with translate_errors():
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": TONE_PROMPT},
                    {"role": "user", "content": text},
                ],
                temperature=0.3,
                max_tokens=100,
            )
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise InvalidResponse() from exc
        if not isinstance(content, str):
            raise InvalidResponse()
        return content.strip()

    def verify_key(self, api_key: str) -> None:
        """Raise a provider error when ``api_key`` is rejected."""
        client = self._client_factory(api_key)
        try:
            with translate_errors():
                client.models.list()
        except RemoteError as exc:
            if exc.status_code == 401:
                raise RemoteError("Invalid API key", 401) from exc
            raise
