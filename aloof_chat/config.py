from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Set, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


load_dotenv()

T = TypeVar("T")

_TRUTHY = {"1", "true", "yes", "y", "on"}


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    # .env files saved with a BOM prefix the first key with U+FEFF.
    for key in (name, *aliases):
        raw = os.environ.get(key, os.environ.get(f"\ufeff{key}"))
        if raw is not None:
            return raw.strip()
    return None


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    return _env_lookup(name, aliases) or default


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    return default if raw is None else raw.lower() in _TRUTHY


def _env_number(name: str, default: T, cast: Callable[[str], T], aliases: tuple[str, ...] = ()) -> T:
    raw = _env_lookup(name, aliases)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    return _env_number(name, default, int, aliases)


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    return _env_number(name, default, float, aliases)


def _env_id_set(name: str) -> Set[int]:
    ids: Set[int] = set()
    for chunk in (_env_lookup(name) or "").split(","):
        chunk = chunk.strip()
        if chunk.isdigit():
            ids.add(int(chunk))
    return ids


def _clean_token(value: str) -> str:
    token = value.strip()
    if token[:4].lower() == "bot ":
        token = token[4:].strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        token = token[1:-1].strip()
    return token


@dataclass(slots=True)
class Settings:
    discord_token: str
    command_prefix: str
    discord_message_content_intent: bool
    mention_only: bool
    auto_reply_channel_ids: Set[int]

    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    gemini_timeout_seconds: int
    gemini_temperature: float
    gemini_max_output_tokens: int
    gemini_max_retries: int

    history_window: int
    impression_every_messages: int
    affinity_start_score: int

    read_delay_min_ms: int
    read_delay_max_ms: int
    reply_pause_min_ms: int
    reply_pause_max_ms: int
    typing_ms_per_char: int
    typing_min_ms: int
    typing_max_ms: int
    level_up_banner_seconds: float
    random_seed: int
    persona_timezone: str

    debug_show_interest: bool
    debug_show_thoughts: bool
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            command_prefix=_env_str("DISCORD_COMMAND_PREFIX", "!"),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            mention_only=_env_bool("BOT_MENTION_ONLY", False),
            auto_reply_channel_ids=_env_id_set("AUTO_REPLY_CHANNEL_IDS"),
            gemini_api_key=_env_str("GEMINI_API_KEY", "", aliases=("API_KEY",)),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_timeout_seconds=_env_int("GEMINI_TIMEOUT_SECONDS", 60),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", 1.2),
            gemini_max_output_tokens=_env_int("GEMINI_MAX_OUTPUT_TOKENS", 0),
            gemini_max_retries=_env_int("GEMINI_MAX_RETRIES", 2),
            history_window=_env_int("HISTORY_WINDOW", 10, aliases=("MAX_RECENT_MESSAGES",)),
            impression_every_messages=_env_int("IMPRESSION_EVERY_MESSAGES", 10),
            affinity_start_score=_env_int("AFFINITY_START_SCORE", 10),
            read_delay_min_ms=_env_int("READ_DELAY_MIN_MS", 1500),
            read_delay_max_ms=_env_int("READ_DELAY_MAX_MS", 6000),
            reply_pause_min_ms=_env_int("REPLY_PAUSE_MIN_MS", 200),
            reply_pause_max_ms=_env_int("REPLY_PAUSE_MAX_MS", 700),
            typing_ms_per_char=_env_int("TYPING_MS_PER_CHAR", 60),
            typing_min_ms=_env_int("TYPING_MIN_MS", 800),
            typing_max_ms=_env_int("TYPING_MAX_MS", 3000),
            level_up_banner_seconds=_env_float("LEVEL_UP_BANNER_SECONDS", 4.0),
            random_seed=_env_int("RANDOM_SEED", 0),
            persona_timezone=_env_str("PERSONA_TIMEZONE", "Asia/Shanghai"),
            debug_show_interest=_env_bool("DEBUG_SHOW_INTEREST", True),
            debug_show_thoughts=_env_bool("DEBUG_SHOW_THOUGHTS", False),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self, require_discord: bool = True) -> None:
        if require_discord:
            if not self.discord_token:
                raise ValueError("DISCORD_TOKEN is required")
            if self.discord_token == "put_your_discord_bot_token_here":
                raise ValueError("DISCORD_TOKEN is still placeholder")
            if not self.command_prefix.strip():
                raise ValueError("DISCORD_COMMAND_PREFIX cannot be empty")

        if not self.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        if self.gemini_api_key == "put_your_gemini_api_key_here":
            raise ValueError("GEMINI_API_KEY is still placeholder")

        if self.gemini_timeout_seconds < 5:
            raise ValueError("GEMINI_TIMEOUT_SECONDS must be >= 5")
        if self.gemini_max_output_tokens < 0:
            raise ValueError("GEMINI_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")
        if self.gemini_max_output_tokens and self.gemini_max_output_tokens < 128:
            raise ValueError("GEMINI_MAX_OUTPUT_TOKENS must be 0 or >= 128")
        if self.gemini_max_retries < 1:
            raise ValueError("GEMINI_MAX_RETRIES must be >= 1")
        if self.gemini_temperature < 0.0 or self.gemini_temperature > 2.0:
            raise ValueError("GEMINI_TEMPERATURE must be in [0, 2]")

        if self.history_window < 1:
            raise ValueError("HISTORY_WINDOW must be >= 1")
        if self.impression_every_messages < 1:
            raise ValueError("IMPRESSION_EVERY_MESSAGES must be >= 1")
        if self.affinity_start_score < 0 or self.affinity_start_score > 100:
            raise ValueError("AFFINITY_START_SCORE must be in [0, 100]")

        if self.read_delay_min_ms < 0 or self.read_delay_max_ms <= self.read_delay_min_ms:
            raise ValueError("READ_DELAY_MIN_MS must be >= 0 and below READ_DELAY_MAX_MS")
        if self.reply_pause_min_ms < 0 or self.reply_pause_max_ms <= self.reply_pause_min_ms:
            raise ValueError("REPLY_PAUSE_MIN_MS must be >= 0 and below REPLY_PAUSE_MAX_MS")
        if self.typing_ms_per_char < 0:
            raise ValueError("TYPING_MS_PER_CHAR must be >= 0")
        if self.typing_min_ms < 0 or self.typing_max_ms < self.typing_min_ms:
            raise ValueError("TYPING_MIN_MS must be >= 0 and <= TYPING_MAX_MS")
        if self.level_up_banner_seconds <= 0:
            raise ValueError("LEVEL_UP_BANNER_SECONDS must be > 0")
        if self.persona_timezone:
            try:
                ZoneInfo(self.persona_timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValueError(f"PERSONA_TIMEZONE is not a known time zone: {self.persona_timezone}") from exc

    def persona_tzinfo(self) -> ZoneInfo | None:
        if not self.persona_timezone:
            return None
        return ZoneInfo(self.persona_timezone)
