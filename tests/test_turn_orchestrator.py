from __future__ import annotations

import asyncio
import random
import sys
from pathlib import Path
from typing import Awaitable, Callable

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from aloof_chat.conversation.gate import ReplyGate  # noqa: E402
from aloof_chat.conversation.models import AffinityTier, Message, MessageStatus, Sender, Verdict  # noqa: E402
from aloof_chat.conversation.oracle import OracleError, OracleRequest  # noqa: E402
from aloof_chat.conversation.orchestrator import TurnOrchestrator  # noqa: E402
from aloof_chat.conversation.pacing import PacingSimulator  # noqa: E402
from aloof_chat.conversation.session import ConversationSession  # noqa: E402


class _Sleeper:
    def __init__(self) -> None:
        self.calls: list[float] = []
        self.hold_first: asyncio.Event | None = None
        self.hooks: dict[int, Callable[[], Awaitable[object]]] = {}

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        index = len(self.calls)
        if index == 1 and self.hold_first is not None:
            await self.hold_first.wait()
        hook = self.hooks.get(index)
        if hook is not None:
            await hook()
        await asyncio.sleep(0)


class _Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[object, ...]] = []
        self.on_read: Callable[[], None] | None = None

    async def message_appended(self, message: Message) -> None:
        self.events.append(("appended", message.sender, message.text))

    async def messages_read(self, messages) -> None:  # type: ignore[no-untyped-def]
        self.events.append(("read", len(messages)))
        if self.on_read is not None:
            self.on_read()

    async def message_annotated(self, message: Message) -> None:
        self.events.append(("annotated", message.interest_level))

    async def typing_started(self) -> None:
        self.events.append(("typing_started",))

    async def typing_stopped(self) -> None:
        self.events.append(("typing_stopped",))

    async def level_up(self, notice) -> None:  # type: ignore[no-untyped-def]
        self.events.append(("level_up", notice.tier, notice.lifetime_seconds))

    async def conversation_reset(self, greeting: Message) -> None:
        self.events.append(("reset", greeting.text))

    def kinds(self) -> list[object]:
        return [event[0] for event in self.events]


class _ScriptedOracle:
    def __init__(
        self,
        verdict: Verdict | None = None,
        *,
        error: Exception | None = None,
        log: list[tuple[object, ...]] | None = None,
    ) -> None:
        self.verdict = verdict
        self.error = error
        self.log = log if log is not None else []
        self.requests: list[OracleRequest] = []
        self.release: asyncio.Event | None = None
        self.finished: asyncio.Event | None = None

    async def evaluate(self, request: OracleRequest) -> Verdict:
        self.requests.append(request)
        self.log.append(("oracle.start",))
        if self.release is not None:
            await self.release.wait()
        self.log.append(("oracle.end",))
        if self.finished is not None:
            self.finished.set()
        if self.error is not None:
            raise self.error
        assert self.verdict is not None
        return self.verdict


def _build(
    oracle: _ScriptedOracle,
    recorder: _Recorder | None = None,
    *,
    start_score: int = 10,
    seed: int = 1,
) -> tuple[TurnOrchestrator, _Sleeper]:
    session = ConversationSession(greeting="有事？", default_impression="还没什么印象。", start_score=start_score)
    sleeper = _Sleeper()
    rng = random.Random(seed)
    orchestrator = TurnOrchestrator(
        session,
        oracle,
        ReplyGate(rng),
        PacingSimulator(rng),
        recorder,
        sleep=sleeper,
    )
    return orchestrator, sleeper


def test_read_receipt_fires_while_oracle_is_still_pending() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(5, "一般", ("嗯",)), log=recorder.events)
    orchestrator, sleeper = _build(oracle, recorder)

    async def scenario():
        oracle.release = asyncio.Event()

        def _release() -> None:
            assert oracle.release is not None
            oracle.release.set()

        recorder.on_read = _release
        return await orchestrator.submit("你好")

    outcome = asyncio.run(scenario())

    kinds = recorder.kinds()
    assert kinds.index("oracle.start") < kinds.index("read") < kinds.index("oracle.end")
    assert 1.5 <= sleeper.calls[0] < 6.0
    assert outcome is not None
    assert outcome.discarded is False
    assert outcome.used_fallback is False


def test_replies_wait_for_read_delay_when_oracle_answers_first() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(6, "还行", ("嗯", "说吧")), log=recorder.events)
    orchestrator, sleeper = _build(oracle, recorder)

    async def scenario():
        sleeper.hold_first = asyncio.Event()
        oracle.finished = sleeper.hold_first
        return await orchestrator.submit("在吗")

    asyncio.run(scenario())

    kinds = recorder.kinds()
    assert kinds.index("oracle.end") < kinds.index("read")
    assert kinds.index("read") < kinds.index("annotated")
    first_bot = next(i for i, e in enumerate(recorder.events) if e[0] == "appended" and e[1] is Sender.BOT)
    assert kinds.index("annotated") < first_bot

    messages = orchestrator.session.store.messages()
    assert [m.sender for m in messages] == [Sender.BOT, Sender.USER, Sender.BOT, Sender.BOT]
    assert messages[1].status is MessageStatus.READ
    assert messages[1].interest_level == 6


def test_oracle_failure_uses_fallback_verdict() -> None:
    oracle = _ScriptedOracle(error=OracleError("HTTP 500"))
    orchestrator, _ = _build(oracle)

    outcome = asyncio.run(orchestrator.submit("hello"))

    assert outcome is not None
    assert outcome.used_fallback is True
    assert outcome.verdict == Verdict(5, "connection failed", ("…",), None)
    messages = orchestrator.session.store.messages()
    assert [m.text for m in messages if m.sender is Sender.BOT][-1] == "…"
    assert messages[-1].thoughts is not None and messages[-1].thoughts.startswith("connection failed")
    assert messages[1].interest_level == 5
    assert orchestrator.session.affinity.score == 11


def test_turn_after_fallback_scores_normally() -> None:
    oracle = _ScriptedOracle(error=OracleError("HTTP 500"))
    orchestrator, _ = _build(oracle)
    session = orchestrator.session

    async def scenario():
        await orchestrator.submit("hello")
        oracle.error = None
        oracle.verdict = Verdict(9, "有意思", ("说说看",))
        bots_before = sum(1 for m in session.store.messages() if m.sender is Sender.BOT)
        outcome = await orchestrator.submit("给你讲个故事")
        return outcome, bots_before

    outcome, bots_before = asyncio.run(scenario())

    assert outcome is not None
    assert outcome.used_fallback is False
    assert outcome.affinity is not None
    assert (outcome.affinity.old_score, outcome.affinity.new_score) == (11, 16)
    assert outcome.affinity.tier_changed is False
    assert session.affinity.score == 16
    assert session.affinity.tier is AffinityTier.STRANGER
    messages = session.store.messages()
    assert sum(1 for m in messages if m.sender is Sender.BOT) == bots_before + 1
    latest_user = [m for m in messages if m.sender is Sender.USER][-1]
    assert latest_user.text == "给你讲个故事"
    assert latest_user.interest_level == 9
    assert messages[-1].text == "说说看"


def test_unexpected_oracle_crash_also_falls_back() -> None:
    oracle = _ScriptedOracle(error=KeyError("boom"))
    orchestrator, _ = _build(oracle)

    outcome = asyncio.run(orchestrator.submit("hello"))

    assert outcome is not None
    assert outcome.used_fallback is True
    assert orchestrator.session.store.messages()[-1].text == "…"


def test_suppressed_turn_appends_system_placeholder() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(1, "烦", ("走开",)))
    orchestrator, sleeper = _build(oracle, recorder)

    outcome = asyncio.run(orchestrator.submit("hi"))

    assert outcome is not None
    assert outcome.decision is not None and outcome.decision.suppressed is True
    last = orchestrator.session.store.messages()[-1]
    assert last.sender is Sender.SYSTEM
    assert last.text == "对方已读但是决定不答复了。"
    assert last.thoughts is not None and last.thoughts.startswith("烦")
    assert "typing_started" not in recorder.kinds()
    assert len(sleeper.calls) == 1
    assert orchestrator.session.affinity.score == 8


def test_thoughts_only_on_first_reply_and_paced_typing() -> None:
    recorder = _Recorder()
    replies = ("嗯", "x" * 20, "y" * 100)
    oracle = _ScriptedOracle(Verdict(9, "有点意思", replies))
    orchestrator, sleeper = _build(oracle, recorder)

    asyncio.run(orchestrator.submit("给你看个东西"))

    bot_messages = [m for m in orchestrator.session.store.messages() if m.sender is Sender.BOT][1:]
    assert [m.text for m in bot_messages] == list(replies)
    assert bot_messages[0].thoughts == "有点意思 [gate: level 9 passes through]"
    assert bot_messages[1].thoughts is None
    assert bot_messages[2].thoughts is None

    pauses = sleeper.calls[1::2]
    typing = sleeper.calls[2::2]
    assert len(pauses) == 3
    assert all(0.2 <= pause < 0.7 for pause in pauses)
    assert typing == [pytest.approx(0.8), pytest.approx(1.2), pytest.approx(3.0)]
    assert recorder.kinds().count("typing_started") == 3
    assert recorder.kinds().count("typing_stopped") == 3


def test_level_up_notice_precedes_annotation_and_replies() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(8, "不错", ("哦",)))
    orchestrator, _ = _build(oracle, recorder, start_score=28)

    outcome = asyncio.run(orchestrator.submit("今天去看展了"))

    assert outcome is not None and outcome.affinity is not None
    assert outcome.affinity.new_score == 31
    level_up = next(e for e in recorder.events if e[0] == "level_up")
    assert level_up[1] is AffinityTier.ACQUAINTANCE
    assert level_up[2] == pytest.approx(4.0)
    kinds = recorder.kinds()
    assert kinds.index("level_up") < kinds.index("annotated") < kinds.index("typing_started")
    assert orchestrator.session.active_notice() is not None


def test_no_level_up_without_tier_increase() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(10, "好", ("嗯",)))
    orchestrator, _ = _build(oracle, recorder, start_score=10)

    asyncio.run(orchestrator.submit("hi"))

    assert "level_up" not in recorder.kinds()
    assert orchestrator.session.active_notice() is None


@pytest.mark.parametrize(("prefill", "expected"), [(8, True), (9, False)])
def test_impression_requested_every_tenth_message(prefill: int, expected: bool) -> None:
    oracle = _ScriptedOracle(Verdict(5, "嗯", ("好",), "话挺多的" if expected else None))
    orchestrator, _ = _build(oracle)
    for index in range(prefill):
        orchestrator.session.store.append(Message.from_user(f"m{index}"))

    asyncio.run(orchestrator.submit("再说一句"))

    request = oracle.requests[0]
    assert request.request_impression is expected
    assert len(request.history) == min(10, prefill + 1)
    assert all(m.text != "再说一句" for m in request.history)
    assert request.latest_text == "再说一句"
    if expected:
        assert orchestrator.session.impression == "话挺多的"
    else:
        assert orchestrator.session.impression == "还没什么印象。"


def test_request_snapshot_carries_affinity_and_image() -> None:
    oracle = _ScriptedOracle(Verdict(5, "嗯", ()))
    orchestrator, _ = _build(oracle, start_score=50)

    asyncio.run(orchestrator.submit("", image="data:image/png;base64,AAAA"))

    request = oracle.requests[0]
    assert request.latest_image == "data:image/png;base64,AAAA"
    assert request.affinity_score == 50
    assert request.affinity_tier is AffinityTier.ACQUAINTANCE
    assert request.impression == "还没什么印象。"


def test_empty_submission_is_ignored() -> None:
    oracle = _ScriptedOracle(Verdict(5, "嗯", ("好",)))
    orchestrator, sleeper = _build(oracle)

    assert asyncio.run(orchestrator.submit("   ")) is None
    assert len(orchestrator.session.store) == 1
    assert oracle.requests == []
    assert sleeper.calls == []


def test_reset_while_oracle_pending_discards_turn() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(10, "好", ("你好呀",)))
    orchestrator, _ = _build(oracle, recorder)

    async def scenario():
        oracle.release = asyncio.Event()
        task = asyncio.create_task(orchestrator.submit("hi"))
        while not oracle.requests:
            await asyncio.sleep(0)
        await orchestrator.reset()
        oracle.release.set()
        return await task

    outcome = asyncio.run(scenario())

    assert outcome is not None and outcome.discarded is True
    session = orchestrator.session
    assert len(session.store) == 1
    assert session.store.messages()[0].text == "有事？"
    assert session.affinity.score == 10
    assert session.impression == "还没什么印象。"
    assert ("reset", "有事？") in recorder.events
    assert "annotated" not in recorder.kinds()
    assert orchestrator.active_turns == {}


def test_reset_during_typing_drops_remaining_replies() -> None:
    recorder = _Recorder()
    oracle = _ScriptedOracle(Verdict(10, "好", ("一", "二")))
    orchestrator, sleeper = _build(oracle, recorder)
    sleeper.hooks[3] = orchestrator.reset

    outcome = asyncio.run(orchestrator.submit("hi"))

    assert outcome is not None and outcome.discarded is True
    assert [m.text for m in orchestrator.session.store.messages()] == ["有事？"]
    kinds = recorder.kinds()
    assert kinds.count("typing_started") == kinds.count("typing_stopped") == 1
    assert kinds[-1] == "typing_stopped"


def test_discard_log_reports_replies_already_sent(caplog: pytest.LogCaptureFixture) -> None:
    oracle = _ScriptedOracle(Verdict(10, "好", ("一", "二")))
    orchestrator, sleeper = _build(oracle)
    sleeper.hooks[5] = orchestrator.reset

    with caplog.at_level("INFO", logger="aloof_chat"):
        outcome = asyncio.run(orchestrator.submit("hi"))

    assert outcome is not None and outcome.discarded is True
    discard_lines = [r.getMessage() for r in caplog.records if "[turn.discard]" in r.getMessage()]
    assert len(discard_lines) == 1
    assert "replies_sent=1" in discard_lines[0]


def test_listener_failure_does_not_break_turn() -> None:
    class _BrokenListener(_Recorder):
        async def messages_read(self, messages) -> None:  # type: ignore[no-untyped-def]
            raise RuntimeError("discord down")

    recorder = _BrokenListener()
    oracle = _ScriptedOracle(Verdict(5, "嗯", ("好",)))
    orchestrator, _ = _build(oracle, recorder)

    outcome = asyncio.run(orchestrator.submit("hi"))

    assert outcome is not None and outcome.discarded is False
    assert orchestrator.session.store.messages()[-1].text == "好"


def test_overlapping_turns_both_settle() -> None:
    oracle = _ScriptedOracle(Verdict(5, "嗯", ("好",)))
    orchestrator, _ = _build(oracle)

    async def scenario():
        return await asyncio.gather(orchestrator.submit("一"), orchestrator.submit("二"))

    first, second = asyncio.run(scenario())

    assert first is not None and second is not None
    assert not first.discarded and not second.discarded
    messages = orchestrator.session.store.messages()
    users = [m for m in messages if m.sender is Sender.USER]
    assert [m.text for m in users] == ["一", "二"]
    assert all(m.status is MessageStatus.READ for m in users)
    assert sum(1 for m in messages if m.sender is Sender.BOT) == 3
    assert orchestrator.session.affinity.score == 12
