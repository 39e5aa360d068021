from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List

import aiohttp

logger = logging.getLogger("aloof_chat")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
_RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.IGNORECASE | re.DOTALL)


class GeminiError(RuntimeError):
    pass


def _backoff_seconds(attempt: int) -> float:
    return min(4.0, 0.4 * attempt + random.uniform(0.0, 0.25))


class GeminiClient:
    """Thin ``generateContent`` client that asks for JSON and returns the decoded object."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = 2,
    ) -> None:
        self.api_key = api_key.strip()
        self.model = model
        self.url = f"{base_url.rstrip('/')}/v1beta/models/{model}:generateContent"
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_output_tokens = max(0, int(max_output_tokens))
        self.max_retries = max(1, int(max_retries))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is not None and not self._session.closed:
            return
        self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds))

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()

    async def _request(self, payload: Dict[str, Any], retries: int = 2) -> Dict[str, Any]:
        if not self.api_key:
            raise GeminiError("GEMINI_API_KEY is missing")
        await self.start()
        assert self._session is not None

        headers = {"x-goog-api-key": self.api_key}
        failure = "no attempt made"
        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(self.url, json=payload, headers=headers) as response:
                    body = await response.text()
                    if response.status == 200:
                        return json.loads(body)
                    if response.status not in _RETRIABLE_STATUSES:
                        raise GeminiError(f"Gemini HTTP {response.status}: {body[:400]}")
                    failure = f"HTTP {response.status}"
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                failure = f"{type(exc).__name__}: {exc}"

            if attempt < retries:
                delay = _backoff_seconds(attempt)
                logger.info("[gemini.retry] attempt=%s/%s reason=%s wait=%.2fs", attempt, retries, failure, delay)
                await asyncio.sleep(delay)

        raise GeminiError(f"Gemini request failed after {retries} attempts ({failure})")

    @staticmethod
    def _extract_text(data: Any) -> str:
        if not isinstance(data, dict):
            raise GeminiError("Gemini returned malformed candidates")
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback")
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                raise GeminiError(f"Gemini blocked response: {block_reason}")
            raise GeminiError("Gemini returned no candidates")

        candidate = candidates[0] if isinstance(candidates, list) else None
        if not isinstance(candidate, dict):
            raise GeminiError("Gemini returned malformed candidates")
        content = candidate.get("content") or {}
        parts = (content.get("parts") if isinstance(content, dict) else None) or []
        if not isinstance(parts, list) or not all(isinstance(part, dict) for part in parts):
            raise GeminiError("Gemini returned malformed candidates")
        texts = [
            part["text"].strip()
            for part in parts
            if isinstance(part.get("text"), str) and part["text"].strip()
        ]
        if texts:
            return "\n".join(texts)
        raise GeminiError(f"Gemini empty response (finishReason={candidate.get('finishReason') or 'unknown'})")

    @staticmethod
    def _strip_json_fences(text: str) -> str:
        cleaned = text.strip()
        match = _FENCE_RE.match(cleaned)
        return match.group(1).strip() if match else cleaned

    def _generation_config(self, temperature: float | None, response_schema: Dict[str, Any] | None) -> Dict[str, Any]:
        config: Dict[str, Any] = {"temperature": self.temperature if temperature is None else temperature}
        if self.max_output_tokens:
            config["maxOutputTokens"] = self.max_output_tokens
        if response_schema is not None:
            config["responseMimeType"] = "application/json"
            config["responseSchema"] = response_schema
        return config

    async def generate_json(
        self,
        contents: List[Dict[str, Any]],
        *,
        system_instruction: str,
        response_schema: Dict[str, Any],
        temperature: float | None = None,
    ) -> Dict[str, Any]:
        """Run one structured ``generateContent`` call and return the decoded object.

        ``contents`` are already in Gemini shape (role + parts, inline images
        included). Anything that is not a JSON object raises ``GeminiError``.
        """
        request: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": self._generation_config(temperature, response_schema),
        }
        if system_instruction.strip():
            request["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        data = await self._request(request, retries=self.max_retries)
        raw = self._strip_json_fences(self._extract_text(data))
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GeminiError(f"Gemini returned invalid JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise GeminiError("Gemini JSON root is not an object")
        return decoded
