"""Pydantic models for HTTP API requests and responses."""

from typing import Optional
from pydantic import BaseModel, Field, model_validator

from fwverify.models.status import Slot, VerifierStage


class VerifyRequest(BaseModel):
    """POST /api/v1.0/verify payload.

    Starts a verification batch (or repeated cycles) in the background.

    Example:
        {
            "device_ids": ["1", "3"],
            "slot": "primary"
        }
    """

    device_ids: list[str] = Field(
        default_factory=list,
        description="Devices to update; empty means let the inventory pick `count` devices",
        examples=[["1", "3"]],
    )
    count: Optional[int] = Field(
        None, ge=1, description="Number of devices to pick when device_ids is empty"
    )
    slot: Slot = Field(Slot.PRIMARY, description="Slot to update in single-batch runs")
    cycles: int = Field(
        1,
        ge=1,
        description="Number of batches; more than one alternates primary and secondary",
    )

    @model_validator(mode="after")
    def devices_or_count(self) -> "VerifyRequest":
        """Either explicit devices or a count is required."""
        if not self.device_ids and self.count is None:
            raise ValueError("Either device_ids or count must be given")
        return self


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: VerifierStage = Field(..., description="Verifier lifecycle stage")
    message: str = Field(..., description="Human-readable status description")
    devices: list[str] = Field(default_factory=list, description="Devices of the current run")
    error: Optional[str] = Field(None, description="Error if stage == failed")


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (400/404/409/500)")
    msg: str = Field(..., description="Error message with error code prefix")
    stage: Optional[VerifierStage] = Field(None, description="Current verifier stage")
