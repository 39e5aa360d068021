from __future__ import annotations

import json
import sys
from datetime import datetime
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from aloof_chat.conversation.models import AffinityTier  # noqa: E402
from aloof_chat.prompts import persona  # noqa: E402
from aloof_chat.prompts.json_loader import clear_prompt_cache, load_prompt_json  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_cache(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("ALOOF_PROMPTS_DIR", raising=False)
    clear_prompt_cache()
    yield
    clear_prompt_cache()


def test_bundled_persona_prompt_loads() -> None:
    assert persona.persona_name() == "秦清越"
    assert persona.greeting_text() == "有事？"
    assert persona.default_impression() == "还没什么印象。"
    assert persona.fallback_reply() == "…"
    assert "高冷" in persona.persona_card()


def test_override_dir_is_deep_merged(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "persona.json").write_text(
        json.dumps({"greeting": "说。", "tier_tone": {"FAVORED": "温柔一点"}}, ensure_ascii=False),
        encoding="utf-8",
    )
    monkeypatch.setenv("ALOOF_PROMPTS_DIR", str(tmp_path))

    assert persona.greeting_text() == "说。"
    instruction = persona.build_system_instruction(
        score=85,
        tier=AffinityTier.FAVORED,
        impression="",
        request_impression=False,
        now=datetime(2024, 3, 9, 12, 0, 0),
    )
    assert "温柔一点" in instruction
    assert "85/100" in instruction
    assert "weekend" in instruction


def test_broken_or_missing_json_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALOOF_PROMPTS_DIR", str(tmp_path))
    defaults = {"greeting": "default"}

    assert load_prompt_json("missing.json", defaults) == defaults

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert load_prompt_json("broken.json", defaults) == defaults

    (tmp_path / "list.json").write_text("[1, 2]", encoding="utf-8")
    assert load_prompt_json("list.json", defaults) == defaults


@pytest.mark.parametrize(
    ("moment", "key"),
    [
        (datetime(2024, 3, 6, 23, 30), "late_night"),
        (datetime(2024, 3, 6, 3, 0), "late_night"),
        (datetime(2024, 3, 6, 10, 0), "work_hours"),
        (datetime(2024, 3, 6, 19, 0), "evening"),
        (datetime(2024, 3, 9, 15, 0), "weekend"),
    ],
)
def test_time_context_buckets(moment: datetime, key: str) -> None:
    expected = persona._DEFAULTS["time_context"][key]
    assert persona.time_context_line(moment) == expected


def test_level_up_text_mentions_tier_and_score() -> None:
    text = persona.build_level_up_text(AffinityTier.ACQUAINTANCE, 31)

    assert "熟识" in text
    assert "31/100" in text
    assert "秦清越" in text
