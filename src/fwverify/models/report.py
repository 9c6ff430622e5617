"""Outcome and report models returned by BatchCoordinator."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from fwverify.models.operation import OperationRecord
from fwverify.models.status import OutcomeKind, Slot


class Outcome(BaseModel):
    """Verdict for one device: Passed, Failed(reason), Skipped(reason) or TimedOut."""

    device_id: str = Field(..., description="Device the verdict applies to")
    kind: OutcomeKind = Field(..., description="Verdict")
    reason: Optional[str] = Field(
        None, description="Reason code for Failed/Skipped (e.g. STAGE_REGRESSION)"
    )
    diagnostic: str = Field("", description="Human-readable triage text")
    record: Optional[OperationRecord] = Field(
        None, description="Operation record when the update was started"
    )

    @classmethod
    def passed(cls, device_id: str, diagnostic: str = "", record=None) -> "Outcome":
        return cls(
            device_id=device_id,
            kind=OutcomeKind.PASSED,
            diagnostic=diagnostic,
            record=record,
        )

    @classmethod
    def failed(
        cls, device_id: str, reason: str, diagnostic: str = "", record=None
    ) -> "Outcome":
        return cls(
            device_id=device_id,
            kind=OutcomeKind.FAILED,
            reason=reason,
            diagnostic=diagnostic,
            record=record,
        )

    @classmethod
    def skipped(cls, device_id: str, reason: str, diagnostic: str = "") -> "Outcome":
        return cls(
            device_id=device_id,
            kind=OutcomeKind.SKIPPED,
            reason=reason,
            diagnostic=diagnostic,
        )

    @classmethod
    def timed_out(cls, device_id: str, diagnostic: str = "", record=None) -> "Outcome":
        return cls(
            device_id=device_id,
            kind=OutcomeKind.TIMED_OUT,
            diagnostic=diagnostic,
            record=record,
        )

    @property
    def is_skipped(self) -> bool:
        return self.kind == OutcomeKind.SKIPPED

    def describe(self) -> str:
        label = self.kind.value
        if self.reason:
            label = f"{label}({self.reason})"
        if self.diagnostic:
            return f"{self.device_id}: {label} - {self.diagnostic}"
        return f"{self.device_id}: {label}"


class BatchReport(BaseModel):
    """Aggregate result of one batch: every selected device has exactly one Outcome."""

    result: bool = Field(..., description="True if every verified device passed")
    outcomes: dict[str, Outcome] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @classmethod
    def merge(
        cls, outcomes: list[Outcome], started_at: Optional[datetime] = None
    ) -> "BatchReport":
        """Build a report from independently produced outcomes.

        The result is the AND of all non-skipped outcomes being Passed. A
        batch in which no device was verified at all is not a pass.
        """
        verified = [o for o in outcomes if not o.is_skipped]
        result = bool(verified) and all(o.kind == OutcomeKind.PASSED for o in verified)
        return cls(
            result=result,
            outcomes={o.device_id: o for o in outcomes},
            started_at=started_at or datetime.now(),
            finished_at=datetime.now(),
        )

    def diagnostic(self, device_id: str) -> str:
        """Per-device triage string."""
        return self.outcomes[device_id].describe()

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for o in self.outcomes.values() if o.kind == kind)

    def summary(self) -> str:
        verdict = "PASSED" if self.result else "FAILED"
        counts = ", ".join(f"{k.value}={self.count(k)}" for k in OutcomeKind)
        return f"Batch {verdict} ({counts})"


class CycleSummary(BaseModel):
    """Result of repeated batches alternating primary and secondary images."""

    reports: list[BatchReport] = Field(default_factory=list)
    success_counts: dict[str, dict[Slot, int]] = Field(default_factory=dict)

    @property
    def result(self) -> bool:
        return bool(self.reports) and all(r.result for r in self.reports)

    def record(self, slot: Slot, report: BatchReport) -> None:
        self.reports.append(report)
        for device_id, outcome in report.outcomes.items():
            counts = self.success_counts.setdefault(
                device_id, {Slot.PRIMARY: 0, Slot.SECONDARY: 0}
            )
            if outcome.kind == OutcomeKind.PASSED:
                counts[slot] += 1
