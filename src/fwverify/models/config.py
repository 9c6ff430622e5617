"""Configuration models for the firmware update verifier."""

import json
import logging
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from fwverify.models.status import COMPLETION_STAGE, DEFAULT_STAGE_ORDER, Slot
from fwverify.utils.logging import resolve_level


class PollingPolicy(BaseModel):
    """Cadence and time budget for polling one device's update status.

    All values are seconds. The first sample is taken after ``initial_delay``
    (``interval`` if unset), later samples ``interval`` apart, and no sample is
    scheduled past ``budget``.
    """

    interval: float = Field(420.0, gt=0, description="Minimum gap between samples")
    budget: float = Field(720.0, gt=0, description="Total polling window")
    initial_delay: Optional[float] = Field(
        None, ge=0, description="Delay before the first sample"
    )
    progress_check: Optional[float] = Field(
        None,
        ge=0,
        description="From this time on the device must no longer report NotStarted",
    )

    @property
    def first_delay(self) -> float:
        return self.interval if self.initial_delay is None else self.initial_delay

    @model_validator(mode="after")
    def first_sample_within_budget(self) -> "PollingPolicy":
        """The first sample must fit inside the budget."""
        if self.first_delay > self.budget:
            raise ValueError(
                f"First sample at {self.first_delay}s is past the budget of {self.budget}s"
            )
        return self


# First check at 5 minutes, second at 12 minutes.
DEFAULT_POLICY = PollingPolicy(
    interval=420.0, budget=720.0, initial_delay=300.0, progress_check=300.0
)


class ImageSet(BaseModel):
    """Primary and secondary firmware images for one device variant."""

    primary: str = Field(..., min_length=1)
    secondary: str = Field(..., min_length=1)

    def for_slot(self, slot: Slot) -> str:
        return self.primary if slot is Slot.PRIMARY else self.secondary


class VerifierConfig(BaseModel):
    """Explicit configuration passed to BatchCoordinator and the services."""

    chassis_url: str = Field(
        "http://localhost:8000", pattern=r"^https?://.+", description="Chassis manager base URL"
    )
    username: Optional[str] = Field(None, description="Basic auth user")
    password: Optional[str] = Field(None, description="Basic auth password")
    rpc_timeout: float = Field(30.0, gt=0, description="Bound on every remote call")
    device_kind: str = Field("psu", description="Kind of device to select")
    devices: list[str] = Field(
        default_factory=lambda: ["1", "2", "3", "4", "5", "6"],
        description="Device ids known to the static inventory",
    )
    minimum_reserve: int = Field(
        1, ge=0, description="Devices that must stay out of every batch"
    )
    polling: PollingPolicy = Field(default_factory=lambda: DEFAULT_POLICY.model_copy())
    stage_order: list[str] = Field(default_factory=lambda: list(DEFAULT_STAGE_ORDER))
    completion_stage: str = Field(COMPLETION_STAGE)
    images: dict[str, ImageSet] = Field(default_factory=dict)
    image_variant: str = Field("les", description="Key into images")
    cycle_pause: float = Field(30.0, ge=0, description="Pause before each stress cycle")
    probe_busy_guard: bool = Field(
        False, description="Require a second start to be rejected while in progress"
    )
    callback_url: Optional[str] = Field(None, description="Where to POST batch reports")
    report_path: str = Field("./reports/last_report.json")
    log_file: str = Field("./logs/fwverify.log")
    log_max_bytes: int = Field(10 * 1024 * 1024, gt=0, description="Rotate the log at this size")
    log_backup_count: int = Field(3, ge=0, description="Rotated log files kept")
    log_level: str = Field("INFO", description="Level name, e.g. DEBUG")

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        resolve_level(v)
        return v.upper()

    @model_validator(mode="after")
    def completion_stage_in_order(self) -> "VerifierConfig":
        """The completion stage must be part of the stage catalogue."""
        if self.completion_stage not in self.stage_order:
            raise ValueError(
                f"Completion stage {self.completion_stage!r} missing from stage_order"
            )
        if len(set(self.stage_order)) != len(self.stage_order):
            raise ValueError("Stage names must be unique")
        return self

    def image_set(self) -> ImageSet:
        """Images for the active variant.

        Raises:
            KeyError: If the active variant has no configured images
        """
        try:
            return self.images[self.image_variant]
        except KeyError:
            raise KeyError(
                f"No images configured for variant {self.image_variant!r}"
            ) from None


def load_config(path: Path) -> VerifierConfig:
    """Load VerifierConfig from a JSON file.

    Args:
        path: Path to config JSON

    Returns:
        Parsed config, or defaults if the file does not exist

    Raises:
        pydantic.ValidationError: If the file content is invalid
    """
    logger = logging.getLogger("fwverify.config")
    if not path.exists():
        logger.info(f"No config file at {path}, using defaults")
        return VerifierConfig()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    config = VerifierConfig(**data)
    logger.info(
        f"Loaded config from {path}: chassis={config.chassis_url}, "
        f"variant={config.image_variant}"
    )
    return config
