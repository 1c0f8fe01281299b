"""generative_client.py
Thin clients for the external text-generation endpoint.

Two back-ends are supported:
1. A Gemini-style REST endpoint (`GEMINI_API_URL`), called directly with httpx.
2. The OpenAI Chat Completion API, used when only `OPENAI_API_KEY` is set.

Both expose `generate(prompt) -> str`. A missing configuration raises
`ConfigurationError`; anything else that goes wrong raises `GenerativeAPIError`.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from openai import OpenAI, OpenAIError

import config


class GenerativeAPIError(Exception):
    """The generative endpoint failed or returned no usable text."""
    pass


class ConfigurationError(GenerativeAPIError):
    """No generative endpoint is configured."""
    pass


def _extract_candidate_text(payload: Any) -> Optional[str]:
    """Returns candidates[0].content.parts[0].text, or None if the path is absent."""
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


class GeminiClient:
    def __init__(self, api_url: str | None, timeout: float = config.GENERATIVE_TIMEOUT_SEC,
                 http_client: httpx.Client | None = None):
        self.api_url = api_url
        self.timeout = timeout
        self._http = http_client

    def generate(self, prompt: str) -> str:
        if not self.api_url:
            raise ConfigurationError("GEMINI_API_URL is missing.")

        body = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            if self._http is not None:
                response = self._http.post(self.api_url, json=body, timeout=self.timeout)
            else:
                response = httpx.post(self.api_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GenerativeAPIError(f"Gemini request failed: {e}") from e

        text = _extract_candidate_text(payload)
        if not text:
            raise GenerativeAPIError("Empty response from Gemini.")
        return text


class OpenAIChatClient:
    def __init__(self, api_key: str | None, model: str = config.OPENAI_MODEL,
                 timeout: float = config.GENERATIVE_TIMEOUT_SEC, client: OpenAI | None = None):
        if not api_key and client is None:
            raise ConfigurationError("OPENAI_API_KEY is missing.")
        self.model = model
        self.timeout = timeout
        self._client = client or OpenAI(api_key=api_key, timeout=timeout)

    def generate(self, prompt: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as e:
            raise GenerativeAPIError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise GenerativeAPIError("Empty response from OpenAI.")
        text = response.choices[0].message.content
        if not text:
            raise GenerativeAPIError("Empty response from OpenAI.")
        return text


def get_client():
    """
    Picks the configured back-end. Gemini wins when both are configured.
    With neither configured, the returned client raises ConfigurationError on use.
    """
    if config.GEMINI_API_URL:
        return GeminiClient(config.GEMINI_API_URL)
    if config.OPENAI_API_KEY:
        return OpenAIChatClient(config.OPENAI_API_KEY)
    return GeminiClient(None)
