"""Source health decisions.

Pure logic: given a source and the outcome of checking it, decide which
state to persist next. No I/O happens here.
"""

import enum
from dataclasses import dataclass
from datetime import datetime

from changewatch.errors import LogicInvariantViolation
from changewatch.sources.schemas import (
    CheckOutcome,
    Source,
    SourceChanged,
    SourceDisabled,
    SourceFailed,
    SourceUnchanged,
)


class HealthAction(enum.Enum):
    """Which write, if any, a decision requires."""

    NONE = "none"
    RECORD_FAILURE = "record_failure"
    RECORD_SUCCESS = "record_success"
    RESET_FAILURES = "reset_failures"


@dataclass(frozen=True)
class HealthDecision:
    """Next persisted state of a source.

    Attributes:
        action: The write to perform.
        enabled: Next value of ``enabled``.
        failed_count: Next value of ``failed_count``.
        last_checked: Next watermark.
        newly_disabled: True when this decision switches the source off.
    """

    action: HealthAction
    enabled: bool
    failed_count: int
    last_checked: datetime
    newly_disabled: bool = False


class SourceHealthTracker:
    """Applies the failure-count / auto-disable policy."""

    def __init__(self, disable_threshold: int = 10) -> None:
        if disable_threshold < 1:
            raise ValueError("disable_threshold must be at least 1")
        self._threshold = disable_threshold

    @property
    def disable_threshold(self) -> int:
        return self._threshold

    def decide(self, source: Source, outcome: CheckOutcome) -> HealthDecision:
        """Compute the state to persist after ``outcome``.

        Unchanged leaves the watermark alone so the same window is scanned
        again next cycle. Any successful fetch clears the failure count;
        an unchanged feed only causes a write when there is a count to clear.
        That write is the one case where Unchanged is not a no-op.
        """
        if isinstance(outcome, SourceUnchanged) and source.failed_count > 0:
            return HealthDecision(
                action=HealthAction.RESET_FAILURES,
                enabled=source.enabled,
                failed_count=0,
                last_checked=source.last_checked,
            )

        if isinstance(outcome, (SourceDisabled, SourceUnchanged)):
            return HealthDecision(
                action=HealthAction.NONE,
                enabled=source.enabled,
                failed_count=source.failed_count,
                last_checked=source.last_checked,
            )

        if isinstance(outcome, SourceFailed):
            failed_count = source.failed_count + 1
            disable = failed_count >= self._threshold
            return HealthDecision(
                action=HealthAction.RECORD_FAILURE,
                enabled=source.enabled and not disable,
                failed_count=failed_count,
                last_checked=source.last_checked,
                newly_disabled=disable and source.enabled,
            )

        if isinstance(outcome, SourceChanged):
            return HealthDecision(
                action=HealthAction.RECORD_SUCCESS,
                enabled=source.enabled,
                failed_count=0,
                last_checked=outcome.most_recent_item_time,
            )

        raise LogicInvariantViolation(f"Unhandled check outcome: {outcome!r}")
