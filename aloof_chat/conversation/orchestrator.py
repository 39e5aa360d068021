from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from ..common import truncate
from .affinity import AffinityUpdate
from .gate import GateDecision, ReplyGate
from .listener import ConversationListener, NullListener
from .models import Message, Verdict, utc_now
from .oracle import Oracle, OracleError, OracleRequest, history_window
from .pacing import PacingSimulator
from .session import ConversationSession

logger = logging.getLogger("aloof_chat")

SleepFn = Callable[[float], Awaitable[None]]


class TurnState(str, Enum):
    COMPOSED = "composed"
    SENT = "sent"
    AWAITING_READ = "awaiting_read"
    READING_WHILE_SCORING = "reading_while_scoring"
    READ = "read"
    DECIDING = "deciding"
    REPLYING = "replying"
    SETTLED = "settled"


@dataclass(slots=True)
class Turn:
    id: int
    generation: int
    user_message_id: str
    request: OracleRequest
    state: TurnState = TurnState.COMPOSED
    replies_sent: int = 0


@dataclass(frozen=True, slots=True)
class TurnOutcome:
    turn_id: int
    user_message_id: str
    verdict: Verdict | None = None
    decision: GateDecision | None = None
    affinity: AffinityUpdate | None = None
    appended_ids: tuple[str, ...] = ()
    used_fallback: bool = False
    discarded: bool = False


@dataclass(slots=True)
class _TurnProgress:
    appended: list[str] = field(default_factory=list)
    verdict: Verdict | None = None
    decision: GateDecision | None = None
    affinity: AffinityUpdate | None = None
    used_fallback: bool = False


class TurnOrchestrator:
    """Drives one user submission from append to settled replies.

    The oracle call and the read delay start together as two tasks. The read
    receipt fires when the delay ends, whether or not the oracle has answered;
    replies only go out after both are done. Overlapping submissions run as
    independent turns and interleave in the store by append order.
    """

    def __init__(
        self,
        session: ConversationSession,
        oracle: Oracle,
        gate: ReplyGate,
        pacing: PacingSimulator,
        listener: ConversationListener | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        history_window: int = 10,
        impression_every: int = 10,
        level_up_seconds: float = 4.0,
        placeholder_text: str = "对方已读但是决定不答复了。",
        fallback_thoughts: str = "connection failed",
        fallback_reply: str = "…",
        label: str = "local",
    ) -> None:
        self.session = session
        self.oracle = oracle
        self.gate = gate
        self.pacing = pacing
        self.listener: ConversationListener = listener or NullListener()
        self._sleep = sleep
        self.history_window = max(1, int(history_window))
        self.impression_every = max(1, int(impression_every))
        self.level_up_seconds = float(level_up_seconds)
        self.placeholder_text = placeholder_text
        self.fallback_thoughts = fallback_thoughts
        self.fallback_reply = fallback_reply
        self.label = label
        self.active_turns: dict[int, Turn] = {}
        self._turn_ids = itertools.count(1)

    def fallback_verdict(self) -> Verdict:
        return Verdict(
            interest_level=5,
            thoughts=self.fallback_thoughts,
            replies=(self.fallback_reply,),
            impression=None,
        )

    def should_request_impression(self, message_count: int) -> bool:
        return message_count > 0 and message_count % self.impression_every == 0

    async def _notify(self, hook: str, *args: object) -> None:
        callback = getattr(self.listener, hook, None)
        if callback is None:
            return
        try:
            await callback(*args)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Listener hook %s failed (channel=%s)", hook, self.label)

    async def _consult_oracle(self, turn: Turn) -> tuple[Verdict, bool]:
        try:
            return await self.oracle.evaluate(turn.request), False
        except asyncio.CancelledError:
            raise
        except OracleError as exc:
            logger.warning("[turn.oracle] channel=%s turn=%s failed: %s", self.label, turn.id, exc)
        except Exception:
            logger.exception("[turn.oracle] channel=%s turn=%s crashed", self.label, turn.id)
        return self.fallback_verdict(), True

    def _advance(self, turn: Turn, state: TurnState) -> None:
        turn.state = state
        logger.debug("[turn.state] channel=%s turn=%s state=%s", self.label, turn.id, state.value)

    def _outcome(self, turn: Turn, progress: _TurnProgress, *, discarded: bool = False) -> TurnOutcome:
        return TurnOutcome(
            turn_id=turn.id,
            user_message_id=turn.user_message_id,
            verdict=progress.verdict,
            decision=progress.decision,
            affinity=progress.affinity,
            appended_ids=tuple(progress.appended),
            used_fallback=progress.used_fallback,
            discarded=discarded,
        )

    def _is_stale(self, turn: Turn) -> bool:
        if self.session.is_current(turn.generation):
            return False
        logger.info(
            "[turn.discard] channel=%s turn=%s state=%s replies_sent=%s reason=reset",
            self.label,
            turn.id,
            turn.state.value,
            turn.replies_sent,
        )
        return True

    async def _append(self, message: Message, progress: _TurnProgress) -> None:
        self.session.store.append(message)
        progress.appended.append(message.id)
        await self._notify("message_appended", message)

    async def submit(self, text: str, image: str | None = None) -> TurnOutcome | None:
        cleaned = (text or "").strip()
        if not cleaned and not image:
            return None

        session = self.session
        store = session.store
        user_message = Message.from_user(cleaned, image)
        history = history_window(store.messages(), self.history_window)
        store.append(user_message)

        request = OracleRequest(
            history=history,
            latest_text=cleaned,
            latest_image=image,
            affinity_score=session.affinity.score,
            affinity_tier=session.affinity.tier,
            impression=session.impression,
            request_impression=self.should_request_impression(len(store)),
            current_time=utc_now(),
        )
        turn = Turn(
            id=next(self._turn_ids),
            generation=session.generation,
            user_message_id=user_message.id,
            request=request,
        )
        self._advance(turn, TurnState.SENT)
        self.active_turns[turn.id] = turn
        logger.info(
            "[msg.user] channel=%s turn=%s image=%s impression=%s text=\"%s\"",
            self.label,
            turn.id,
            bool(image),
            request.request_impression,
            truncate(cleaned, 120),
        )

        oracle_task = asyncio.create_task(self._consult_oracle(turn), name=f"oracle-turn-{turn.id}")
        read_task = asyncio.create_task(
            self._sleep(self.pacing.read_delay_ms() / 1000.0),
            name=f"read-delay-turn-{turn.id}",
        )
        self._advance(turn, TurnState.AWAITING_READ)
        progress = _TurnProgress(appended=[user_message.id])
        try:
            await self._notify("message_appended", user_message)
            self._advance(turn, TurnState.READING_WHILE_SCORING)

            await read_task
            if self._is_stale(turn):
                return self._outcome(turn, progress, discarded=True)
            read_now = store.mark_user_messages_read()
            self._advance(turn, TurnState.READ)
            if read_now:
                logger.info("[turn.read] channel=%s turn=%s marked=%s", self.label, turn.id, len(read_now))
                await self._notify("messages_read", read_now)

            verdict, used_fallback = await oracle_task
            if self._is_stale(turn):
                return self._outcome(turn, progress, discarded=True)
            progress.verdict = verdict
            progress.used_fallback = used_fallback
            await self._decide(turn, verdict, progress)
            if self._is_stale(turn):
                return self._outcome(turn, progress, discarded=True)

            self._advance(turn, TurnState.REPLYING)
            if not await self._deliver(turn, progress):
                return self._outcome(turn, progress, discarded=True)

            self._advance(turn, TurnState.SETTLED)
            return self._outcome(turn, progress)
        finally:
            for task in (read_task, oracle_task):
                if not task.done():
                    task.cancel()
            self.active_turns.pop(turn.id, None)

    async def _decide(self, turn: Turn, verdict: Verdict, progress: _TurnProgress) -> None:
        self._advance(turn, TurnState.DECIDING)
        session = self.session

        update = session.affinity.apply_delta(verdict.interest_level)
        progress.affinity = update
        annotated = session.store.annotate(turn.user_message_id, interest_level=verdict.interest_level)
        if session.update_impression(verdict.impression):
            logger.info("[turn.impression] channel=%s turn=%s \"%s\"", self.label, turn.id, truncate(session.impression, 120))
        decision = self.gate.decide(verdict.interest_level, update.new_tier, verdict.replies, verdict.thoughts)
        progress.decision = decision
        logger.info(
            "[turn.verdict] channel=%s turn=%s interest=%s score=%s->%s tier=%s replies=%s/%s fallback=%s",
            self.label,
            turn.id,
            verdict.interest_level,
            update.old_score,
            update.new_score,
            update.new_tier.name,
            len(decision.replies),
            len(verdict.replies),
            progress.used_fallback,
        )

        if update.tier_changed:
            notice = session.issue_level_up(update.new_tier, update.new_score, self.level_up_seconds)
            await self._notify("level_up", notice)
        if annotated is not None and session.is_current(turn.generation):
            await self._notify("message_annotated", annotated)

    async def _deliver(self, turn: Turn, progress: _TurnProgress) -> bool:
        decision = progress.decision
        assert decision is not None

        if not decision.replies:
            placeholder = Message.from_system(self.placeholder_text, thoughts=decision.thoughts)
            await self._append(placeholder, progress)
            return True

        for index, reply in enumerate(decision.replies):
            await self._sleep(self.pacing.inter_message_pause_ms() / 1000.0)
            if self._is_stale(turn):
                return False
            await self._notify("typing_started")
            try:
                await self._sleep(self.pacing.typing_duration_ms(reply) / 1000.0)
            finally:
                await self._notify("typing_stopped")
            if self._is_stale(turn):
                return False
            bot_message = Message.from_bot(reply, thoughts=decision.thoughts if index == 0 else None)
            await self._append(bot_message, progress)
            turn.replies_sent += 1
            logger.info("[msg.bot] channel=%s turn=%s text=\"%s\"", self.label, turn.id, truncate(reply, 120))
        return True

    async def reset(self) -> Message:
        greeting = self.session.reset()
        logger.info(
            "[turn.reset] channel=%s generation=%s in_flight=%s",
            self.label,
            self.session.generation,
            len(self.active_turns),
        )
        await self._notify("conversation_reset", greeting)
        return greeting
