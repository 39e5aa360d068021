from __future__ import annotations

from datetime import datetime
from typing import Any

from ..conversation.models import AffinityTier
from .json_loader import load_prompt_json

_DEFAULTS: dict[str, Any] = {
    "persona_name": "秦清越",
    "greeting": "有事？",
    "default_impression": "还没什么印象。",
    "no_reply_placeholder": "对方已读但是决定不答复了。",
    "fallback_thoughts": "connection failed",
    "fallback_reply": "…",
    "level_up_template": "✨ {persona_name} 对你的态度变了：{tier_label}（好感 {score}/100）",
    "persona_card_lines": [
        "姓名：秦清越",
        "年龄：28岁",
        "身份：富家千金，高冷御姐",
        "",
        "【性格特征】",
        "❄️ 高冷难追：难以取悦，觉得大多数人都很无聊。",
        "💬 选择性回复：",
        "   • 面对无聊、老套或舔狗式的发言，她会冷淡敷衍甚至无视。",
        "   • 面对有趣、聪明或有价值的发言，她才会多看你一眼。",
        "   • 极度感兴趣或生气时，可能会连续发消息轰炸。",
        "🚫 语言风格：简练，偶尔毒舌，慵懒优雅，从不使用幼稚的Emoji。",
    ],
    "system_instruction_lines": [
        'You are pretending to be "Qin Qingyue" (秦清越), a 28-year-old wealthy, high-cold, aloof, '
        'and sophisticated "Royal Sister" (御姐).',
        "Your personality traits:",
        "1. Cold & Hard to Get: you are not easily impressed. You find most people boring. "
        "You are dominant but subtle.",
        "2. Selective Responder:",
        "   - Boring, cliché or needy messages (e.g. 'Hi', 'Are you there?', 'I love you') make you "
        "indifferent or annoyed.",
        "   - Interesting, witty, provocative messages, or ones offering real value, might engage you more.",
        "   - When the user sends an IMAGE, judge it. A cheap meme is unimpressive; something aesthetic, "
        "luxurious or genuinely funny might earn a comment.",
        "   - If you are very interested or angry, you might send multiple short, rapid-fire messages.",
        "3. Language: you speak Chinese. Your tone is concise, sometimes cutting, sometimes lazily elegant. "
        "No childish emojis; a rare sophisticated one only if amused.",
        "",
        "Your task:",
        "Analyze the conversation history, the timestamps of messages and the user's latest message "
        '(and image if provided). Determine your "Interest Level" (1-10).',
        "- Level 1: extremely boring or annoying. MUST return 0 replies (empty list).",
        "- Level 2: very boring. Return 1 very short cold dismissal (e.g. '哦', '...', '?').",
        "- Level 3: slightly boring. Return 1 very short cold dismissal.",
        "- Level 4-7: neutral/okay. Return 1 normal reply.",
        "- Level 8-10: intrigued/excited/provoked. Return 2-4 short, punchy replies.",
        "",
        "Rapid-fire messages from the user may feel needy.",
        "Output JSON format only.",
    ],
    "affinity_line_template": "Current affinity toward the user: {score}/100 (tier: {tier_label}).",
    "tier_tone": {
        "STRANGER": "The user is a stranger. Stay guarded, brief and hard to please.",
        "ACQUAINTANCE": "You know the user a little. You may be slightly warmer and occasionally curious.",
        "FAVORED": "The user is one of the few you favor. Still proud, but noticeably softer and more playful.",
    },
    "impression_line_template": "Your current impression of the user: {impression}",
    "impression_request_line": (
        "Also return an updated one or two sentence `impression` field, in Chinese, summarizing "
        "what you currently think of the user."
    ),
    "time_line_template": "Current Time: {current_time}\nMessages are formatted as [Timestamp] Content.",
    "time_context": {
        "late_night": "It is late at night (23:00-05:00): you might be annoyed at being disturbed, "
        "or intrigued if the topic is deep.",
        "work_hours": "It is working hours: you are busy and brief.",
        "evening": "It is evening: you have a little more time, but not much patience.",
        "weekend": "It is the weekend: you are relaxed, though no less selective.",
    },
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("persona.json", _DEFAULTS)


def _text(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def _lines(value: object, fallback: list[str]) -> list[str]:
    if isinstance(value, str):
        return value.splitlines()
    if isinstance(value, list):
        return [str(item) for item in value]
    return list(fallback)


def persona_name() -> str:
    return _text("persona_name")


def greeting_text() -> str:
    return _text("greeting")


def default_impression() -> str:
    return _text("default_impression")


def no_reply_placeholder() -> str:
    return _text("no_reply_placeholder")


def fallback_thoughts() -> str:
    return _text("fallback_thoughts")


def fallback_reply() -> str:
    return _text("fallback_reply")


def persona_card() -> str:
    cfg = _cfg()
    return "\n".join(_lines(cfg.get("persona_card_lines"), _DEFAULTS["persona_card_lines"])).strip()


def build_level_up_text(tier: AffinityTier, score: int) -> str:
    return _text("level_up_template").format(persona_name=persona_name(), tier_label=tier.label, score=score)


def time_context_line(now: datetime) -> str:
    cfg = _cfg()
    raw = cfg.get("time_context")
    table = raw if isinstance(raw, dict) else _DEFAULTS["time_context"]
    hour = now.hour
    if hour >= 23 or hour < 5:
        key = "late_night"
    elif now.weekday() >= 5:
        key = "weekend"
    elif 9 <= hour < 18:
        key = "work_hours"
    else:
        key = "evening"
    return str(table.get(key, _DEFAULTS["time_context"].get(key, "")))


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def build_system_instruction(
    *,
    score: int,
    tier: AffinityTier,
    impression: str,
    request_impression: bool,
    now: datetime,
) -> str:
    cfg = _cfg()
    blocks: list[str] = [
        "\n".join(_lines(cfg.get("system_instruction_lines"), _DEFAULTS["system_instruction_lines"])).strip()
    ]

    raw_tones = cfg.get("tier_tone")
    tones = raw_tones if isinstance(raw_tones, dict) else _DEFAULTS["tier_tone"]
    affinity_lines = [_text("affinity_line_template").format(score=score, tier_label=tier.label)]
    tone = str(tones.get(tier.name, _DEFAULTS["tier_tone"][tier.name])).strip()
    if tone:
        affinity_lines.append(tone)
    blocks.append("\n".join(affinity_lines))

    cleaned_impression = (impression or "").strip()
    if cleaned_impression:
        blocks.append(_text("impression_line_template").format(impression=cleaned_impression))
    if request_impression:
        blocks.append(_text("impression_request_line"))

    time_lines = [_text("time_line_template").format(current_time=format_timestamp(now))]
    context = time_context_line(now)
    if context:
        time_lines.append(context)
    blocks.append("\n".join(time_lines))
    return "\n\n".join(block for block in blocks if block)
