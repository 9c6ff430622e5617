"""Per-device operation models for firmware update verification."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fwverify.models.status import (
    CompletionCode,
    RejectReason,
    Slot,
    UpdateStatus,
)


class UpdateRequest(BaseModel):
    """One attempt to flash an image into a device slot.

    Immutable; a new request is built for every attempt.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., min_length=1, description="Target device identifier")
    slot: Slot = Field(..., description="Firmware image slot to update")
    image_ref: str = Field(
        ...,
        min_length=1,
        description="Opaque image reference (path on the chassis manager)",
        examples=["C:\\PsuFw\\primary_les.hex"],
    )

    @field_validator("image_ref")
    @classmethod
    def no_blank_image_ref(cls, v: str) -> str:
        """Reject whitespace-only image references."""
        if not v.strip():
            raise ValueError("Image reference must not be blank")
        return v


class FirmwareStatus(BaseModel):
    """Result of DeviceController.get_firmware_status."""

    completion_code: CompletionCode = Field(..., description="RPC completion code")
    status: UpdateStatus = Field(
        UpdateStatus.NOT_STARTED, description="Overall update status"
    )
    stage: str = Field("NotStarted", description="Stage label reported by the device")
    revision: str = Field("", description="Firmware revision, e.g. 'A0.05.03'")
    diagnostic: str = Field("", description="Status description from the device")


class StartResponse(BaseModel):
    """Result of DeviceController.start_firmware_update."""

    accepted: bool = Field(..., description="True if the device started the update")
    completion_code: CompletionCode = Field(
        CompletionCode.SUCCESS, description="RPC completion code"
    )
    diagnostic: str = Field("", description="Status description, kept verbatim")


class PolicyDecision(BaseModel):
    """Result of PolicyGate.is_update_allowed."""

    allowed: bool
    diagnostic: str = ""


class PollResult(BaseModel):
    """One timestamp-ordered status sample."""

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=0, description="Sample number, starting at 0")
    elapsed: float = Field(..., ge=0, description="Seconds since polling started")
    completion_code: CompletionCode
    status: UpdateStatus
    stage: str
    revision: str = ""

    @classmethod
    def from_status(
        cls, sequence: int, elapsed: float, status: FirmwareStatus
    ) -> "PollResult":
        return cls(
            sequence=sequence,
            elapsed=elapsed,
            completion_code=status.completion_code,
            status=status.status,
            stage=status.stage,
            revision=status.revision,
        )

    def describe(self) -> str:
        return (
            f"completionCode: {self.completion_code.value} "
            f"fwUpdateStatus: {self.status.value} "
            f"fwUpdateStage: {self.stage} fwRevision: {self.revision}"
        )


class OperationRecord(BaseModel):
    """Book-keeping for one device's update within a batch.

    Owned by a single device pipeline; never shared across devices.
    """

    device_id: str
    slot: Slot
    state: UpdateStatus = UpdateStatus.NOT_STARTED
    stage: str = "NotStarted"
    revision_before: Optional[str] = None
    revision_after: Optional[str] = None
    history: list[PollResult] = Field(default_factory=list)

    def observe(self, sample: PollResult) -> None:
        """Append a sample and mirror its status, stage and revision."""
        self.history.append(sample)
        self.state = sample.status
        self.stage = sample.stage
        if sample.status.is_terminal:
            self.revision_after = sample.revision


class StartResult(BaseModel):
    """Accepted or Rejected(reason) answer of OperationController.start_update."""

    accepted: bool
    reason: Optional[RejectReason] = None
    diagnostic: str = ""
    record: Optional[OperationRecord] = None

    @classmethod
    def accept(cls, record: OperationRecord, diagnostic: str = "") -> "StartResult":
        return cls(accepted=True, record=record, diagnostic=diagnostic)

    @classmethod
    def reject(cls, reason: RejectReason, diagnostic: str) -> "StartResult":
        return cls(accepted=False, reason=reason, diagnostic=diagnostic)
