from __future__ import annotations

import re

_SENTENCE_END = re.compile(r"[。！？!?…]|\.\s")


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate(text: str, limit: int) -> str:
    """Shorten ``text`` for log lines, preferring a sentence end past 60% of ``limit``."""
    flat = collapse_spaces(text)
    if len(flat) <= limit:
        return flat
    if limit <= 1:
        return flat[:limit]

    window = flat[: limit - 1]
    ends = [match.end() for match in _SENTENCE_END.finditer(window)]
    if ends and ends[-1] >= int(limit * 0.6):
        return window[: ends[-1]].rstrip()
    return window.rstrip() + "…"


def chunk_text(text: str, limit: int = 1900) -> list[str]:
    """Split outgoing text into Discord-sized pieces, breaking on newlines when possible."""
    chunks: list[str] = []
    buffer = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if buffer:
                chunks.append(buffer)
                buffer = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(buffer) + len(line) > limit:
            chunks.append(buffer)
            buffer = ""
        buffer += line
    if buffer or not chunks:
        chunks.append(buffer)
    return chunks
