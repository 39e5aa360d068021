from .affinity import AffinityEngine, AffinityUpdate, delta_for_interest, tier_for_score
from .gate import GateDecision, ReplyGate
from .listener import ConversationListener, NullListener
from .models import AffinityTier, Message, MessageStatus, Sender, Verdict
from .oracle import Oracle, OracleError, OracleRequest
from .orchestrator import TurnOrchestrator, TurnOutcome, TurnState
from .pacing import PacingProfile, PacingSimulator
from .session import ConversationSession, LevelUpNotice
from .store import MessageStore

__all__ = [
    "AffinityEngine",
    "AffinityTier",
    "AffinityUpdate",
    "ConversationListener",
    "ConversationSession",
    "GateDecision",
    "LevelUpNotice",
    "Message",
    "MessageStatus",
    "MessageStore",
    "NullListener",
    "Oracle",
    "OracleError",
    "OracleRequest",
    "PacingProfile",
    "PacingSimulator",
    "ReplyGate",
    "Sender",
    "TurnOrchestrator",
    "TurnOutcome",
    "TurnState",
    "Verdict",
    "delta_for_interest",
    "tier_for_score",
]
