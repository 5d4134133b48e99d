# bytsave/models/decision.py

"""Evaluator decisions and per-run processing results."""

from dataclasses import dataclass, field
from enum import Enum


class SuppressionReason(str, Enum):
    """Why a tracker did not fire."""

    IN_COOLDOWN = "in_cooldown"
    PRICE_ABOVE_TARGET = "price_above_target"
    INSUFFICIENT_DISCOUNT = "insufficient_discount"
    INVALID_BASELINE = "invalid_baseline"


@dataclass(frozen=True)
class AlertDecision:
    """Tagged evaluator result: fire, or suppressed with a reason.

    ``rebound_eligible`` is only ever set alongside ``IN_COOLDOWN`` and
    tells the processor the price has bounced back enough to clear the
    cooldown.
    """

    fire: bool
    reason: SuppressionReason | None = None
    rebound_eligible: bool = False

    @classmethod
    def fired(cls) -> "AlertDecision":
        return cls(fire=True)

    @classmethod
    def suppressed(
        cls,
        reason: SuppressionReason,
        rebound_eligible: bool = False,
    ) -> "AlertDecision":
        return cls(
            fire=False,
            reason=reason,
            rebound_eligible=rebound_eligible,
        )

    def __str__(self) -> str:
        if self.fire:
            return "Fire"
        suffix = " (rebound)" if self.rebound_eligible else ""
        reason = self.reason.value if self.reason else "?"
        return f"Suppressed({reason}){suffix}"


class ItemState(str, Enum):
    """Per-item states walked during one processing cycle."""

    IDLE = "idle"
    COOLDOWN_ACTIVE = "cooldown_active"
    REBOUND_ELIGIBLE = "rebound_eligible"
    EVALUATING = "evaluating"
    NOTIFYING = "notifying"
    UPDATED = "updated"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Categories of per-item failures reported back to operators."""

    SNAPSHOT_UNAVAILABLE = "snapshot_unavailable"
    INVALID_BASELINE = "invalid_baseline"
    NOTIFICATION_FAILED = "notification_failed"
    RATE_LIMITED = "rate_limited"
    REPOSITORY_ERROR = "repository_error"
    INVALID_TRACKER = "invalid_tracker"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class ProcessingError:
    """A single item's failure within a run."""

    item_id: int
    kind: ErrorKind
    cause: str


@dataclass
class ProcessingResult:
    """Outcome of one ``process_all`` run."""

    alerts_sent: int = 0
    errors: list[ProcessingError] = field(
        default_factory=lambda: list[ProcessingError]()
    )
    items_seen: int = 0
    suppressed: int = 0
    cooldown_resets: int = 0
    conflicts: int = 0
    skipped: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        """True when no item failed."""
        return not self.errors
