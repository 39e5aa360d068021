from __future__ import annotations

import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Any, Dict, List

import aiohttp

from ..conversation.models import Sender, Verdict
from ..conversation.oracle import OracleError, OracleRequest
from ..prompts.persona import build_system_instruction, format_timestamp
from .gemini_client import GeminiClient, GeminiError

logger = logging.getLogger("aloof_chat")


def split_data_uri(data_uri: str | None) -> tuple[str, str] | None:
    """Return ``(mime_type, base64_payload)`` for a ``data:`` URI, or None."""
    if not data_uri or not data_uri.startswith("data:") or "," not in data_uri:
        return None
    header, payload = data_uri.split(",", 1)
    meta = header[len("data:") :]
    mime_type = meta.split(";", 1)[0].strip()
    if not mime_type or not payload or ";base64" not in meta:
        return None
    return mime_type, payload


def build_response_schema(request_impression: bool) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        "interestLevel": {
            "type": "INTEGER",
            "description": "A score from 1 to 10 indicating how interested you are in the conversation.",
        },
        "thoughts": {
            "type": "STRING",
            "description": "Internal monologue explaining why you feel this way.",
        },
        "replies": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "Text replies to send back. Can be empty if you decide to ignore the user.",
        },
    }
    required = ["interestLevel", "replies", "thoughts"]
    if request_impression:
        properties["impression"] = {
            "type": "STRING",
            "description": "One or two sentences on what you currently think of the user.",
        }
        required.append("impression")
    return {"type": "OBJECT", "properties": properties, "required": required}


def parse_verdict(payload: object, *, request_impression: bool) -> Verdict:
    if not isinstance(payload, dict):
        raise OracleError("Oracle payload is not an object")

    level = payload.get("interestLevel")
    if isinstance(level, bool) or not isinstance(level, int):
        raise OracleError(f"interestLevel must be an integer, got {level!r}")
    if level < 1 or level > 10:
        raise OracleError(f"interestLevel out of range: {level}")

    thoughts = payload.get("thoughts")
    if not isinstance(thoughts, str):
        raise OracleError("thoughts must be a string")

    replies = payload.get("replies")
    if not isinstance(replies, list) or not all(isinstance(item, str) for item in replies):
        raise OracleError("replies must be a list of strings")

    impression: str | None = None
    if "impression" in payload and payload["impression"] is not None:
        raw_impression = payload["impression"]
        if not isinstance(raw_impression, str):
            raise OracleError("impression must be a string")
        if request_impression:
            impression = raw_impression.strip() or None

    return Verdict(
        interest_level=level,
        thoughts=thoughts,
        replies=tuple(replies),
        impression=impression,
    )


class GeminiOracle:
    def __init__(self, client: GeminiClient, *, timezone: tzinfo | None = None) -> None:
        self.client = client
        self.timezone = timezone

    def _local(self, moment: datetime) -> datetime:
        if self.timezone is None:
            return moment
        return moment.astimezone(self.timezone)

    def _parts(self, moment: datetime, text: str, image: str | None) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = [{"text": f"[{format_timestamp(self._local(moment))}] {text}"}]
        inline = split_data_uri(image)
        if inline is not None:
            mime_type, data = inline
            parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
        return parts

    def build_contents(self, request: OracleRequest) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        for message in request.history:
            role = "user" if message.sender is Sender.USER else "model"
            contents.append({"role": role, "parts": self._parts(message.timestamp, message.text, message.image)})
        contents.append(
            {
                "role": "user",
                "parts": self._parts(request.current_time, request.latest_text, request.latest_image),
            }
        )
        return contents

    def build_system_instruction(self, request: OracleRequest) -> str:
        return build_system_instruction(
            score=request.affinity_score,
            tier=request.affinity_tier,
            impression=request.impression,
            request_impression=request.request_impression,
            now=self._local(request.current_time),
        )

    async def evaluate(self, request: OracleRequest) -> Verdict:
        try:
            payload = await self.client.generate_json(
                self.build_contents(request),
                system_instruction=self.build_system_instruction(request),
                response_schema=build_response_schema(request.request_impression),
            )
        except asyncio.CancelledError:
            raise
        except (GeminiError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise OracleError(str(exc) or type(exc).__name__) from exc
        verdict = parse_verdict(payload, request_impression=request.request_impression)
        logger.debug(
            "[oracle.verdict] interest=%s replies=%s impression=%s",
            verdict.interest_level,
            len(verdict.replies),
            verdict.impression is not None,
        )
        return verdict
