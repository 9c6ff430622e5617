"""State machine validating the status/stage samples of one update."""

import logging
from typing import Iterable, Optional, Sequence
from pydantic import BaseModel

from fwverify.models.operation import PollResult
from fwverify.models.status import (
    COMPLETION_STAGE,
    DEFAULT_STAGE_ORDER,
    CompletionCode,
    UpdateStatus,
)

# Completion codes under which a status sample is trustworthy.
VALID_SAMPLE_CODES = (CompletionCode.SUCCESS, CompletionCode.FIRMWARE_UPDATE_IN_PROGRESS)

STAGE_REGRESSION = "STAGE_REGRESSION"
STATUS_REGRESSION = "STATUS_REGRESSION"
UNKNOWN_STAGE = "UNKNOWN_STAGE"
INCOMPLETE_SUCCESS = "INCOMPLETE_SUCCESS"
UPDATE_FAILED = "UPDATE_FAILED"
UPDATE_NOT_STARTED = "UPDATE_NOT_STARTED"
STATUS_QUERY_FAILED = "STATUS_QUERY_FAILED"


class StageVerdict(BaseModel):
    """Classification of a sample sequence."""

    state: UpdateStatus
    stage: str
    violation: Optional[str] = None
    diagnostic: str = ""

    @property
    def succeeded(self) -> bool:
        return self.violation is None and self.state == UpdateStatus.SUCCEEDED

    @property
    def terminal(self) -> bool:
        return self.violation is not None or self.state.is_terminal


class StageVerifier:
    """Tracks one device's samples and flags inconsistent progress.

    Stage ordinals must never decrease and status may only move forward along
    NotStarted → InProgress → Success/Failed. A regression fails the update
    no matter how it ends. Success counts only at the completion stage; a
    Failed sample reports the stage the update died in.
    """

    def __init__(
        self,
        stage_order: Sequence[str] = DEFAULT_STAGE_ORDER,
        completion_stage: str = COMPLETION_STAGE,
        progress_check: Optional[float] = None,
    ):
        self.logger = logging.getLogger("fwverify.stage_verifier")
        self.ordinals = {name: idx for idx, name in enumerate(stage_order)}
        self.completion_stage = completion_stage
        self.progress_check = progress_check

        self.state = UpdateStatus.NOT_STARTED
        self.stage = stage_order[0] if stage_order else ""
        self.max_ordinal = -1
        self.max_stage: Optional[str] = None
        self.violation: Optional[str] = None
        self.diagnostic = ""

    def observe(self, sample: PollResult) -> Optional[str]:
        """Feed the next sample; returns the violation code once one occurs."""
        if self.violation is not None:
            return self.violation

        if sample.completion_code not in VALID_SAMPLE_CODES:
            return self._violate(
                STATUS_QUERY_FAILED,
                f"Status query returned {sample.completion_code.value} "
                f"(sample {sample.sequence})",
            )

        ordinal = self.ordinals.get(sample.stage)
        if ordinal is None:
            return self._violate(
                UNKNOWN_STAGE, f"Unknown stage {sample.stage!r} (sample {sample.sequence})"
            )
        if ordinal < self.max_ordinal:
            return self._violate(
                STAGE_REGRESSION,
                f"Stage went back from {self.max_stage} to {sample.stage} "
                f"(sample {sample.sequence})",
            )
        if sample.status.rank < self.state.rank or (
            self.state.is_terminal and sample.status != self.state
        ):
            return self._violate(
                STATUS_REGRESSION,
                f"Status went from {self.state.value} to {sample.status.value} "
                f"(sample {sample.sequence})",
            )

        self.max_ordinal = ordinal
        self.max_stage = sample.stage
        self.state = sample.status
        self.stage = sample.stage

        if (
            sample.status == UpdateStatus.NOT_STARTED
            and self.progress_check is not None
            and sample.elapsed >= self.progress_check
        ):
            return self._violate(
                UPDATE_NOT_STARTED,
                f"Update still NotStarted after {sample.elapsed:.0f}s",
            )
        if sample.status == UpdateStatus.SUCCEEDED and sample.stage != self.completion_stage:
            return self._violate(
                INCOMPLETE_SUCCESS,
                f"Success reported at stage {sample.stage}, "
                f"expected {self.completion_stage}",
            )
        if sample.status == UpdateStatus.FAILED:
            return self._violate(UPDATE_FAILED, f"Update failed at stage {sample.stage}")
        return None

    def verdict(self) -> StageVerdict:
        """Current classification; non-terminal without violation means not finished."""
        return StageVerdict(
            state=self.state,
            stage=self.stage,
            violation=self.violation,
            diagnostic=self.diagnostic,
        )

    def verify(self, samples: Iterable[PollResult]) -> StageVerdict:
        """Classify a complete sample sequence."""
        for sample in samples:
            if self.observe(sample) is not None:
                break
        return self.verdict()

    def _violate(self, code: str, diagnostic: str) -> str:
        self.violation = code
        self.diagnostic = diagnostic
        self.logger.error(f"{code}: {diagnostic}")
        return code
