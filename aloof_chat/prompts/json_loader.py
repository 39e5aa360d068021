from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger("aloof_chat.prompts")

_ENCODINGS = ("utf-8-sig", "gb18030")
_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}
_MISSING: set[Path] = set()


def prompts_dir() -> Path:
    override = os.getenv("ALOOF_PROMPTS_DIR", "").strip()
    return Path(override).expanduser() if override else Path(__file__).parent / "data"


def _decode(raw: bytes, path: Path) -> str:
    for encoding in _ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise UnicodeDecodeError(_ENCODINGS[-1], raw, 0, len(raw), f"undecodable prompt file {path}")


def _merged(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    result = copy.deepcopy(defaults)
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merged(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _read_overrides(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(_decode(path.read_bytes(), path))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Prompt JSON %s unreadable (%s), using defaults", path, exc)
        return {}
    if not isinstance(payload, dict):
        logger.warning("Prompt JSON %s must hold an object, using defaults", path)
        return {}
    return payload


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    """Return ``defaults`` deep-merged with ``<prompts dir>/<filename>``.

    Results are cached per file and refreshed when the file's mtime changes,
    so prompt edits apply without a restart. Missing or broken files fall
    back to the defaults.
    """
    path = (prompts_dir() / filename).resolve()
    try:
        mtime_ns = path.stat().st_mtime_ns
    except OSError:
        if path not in _MISSING:
            _MISSING.add(path)
            logger.warning("Prompt JSON not found: %s (using defaults)", path)
        return copy.deepcopy(defaults)

    cached = _CACHE.get(path)
    if cached is None or cached[0] != mtime_ns:
        cached = (mtime_ns, _merged(defaults, _read_overrides(path)))
        _CACHE[path] = cached
    return copy.deepcopy(cached[1])


def clear_prompt_cache() -> None:
    _CACHE.clear()
    _MISSING.clear()
