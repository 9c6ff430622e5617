"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path
from typing import Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fwverify.models.config import ImageSet, PollingPolicy, VerifierConfig  # noqa: E402
from fwverify.models.operation import (  # noqa: E402
    FirmwareStatus,
    PolicyDecision,
    StartResponse,
)
from fwverify.models.status import CompletionCode, Slot, UpdateStatus  # noqa: E402
from fwverify.services.controller import TransportError  # noqa: E402
from fwverify.utils.clock import VirtualClock  # noqa: E402


def status(
    state: UpdateStatus = UpdateStatus.NOT_STARTED,
    stage: str = "NotStarted",
    revision: str = "A0.05.03",
    code: CompletionCode = CompletionCode.SUCCESS,
) -> FirmwareStatus:
    """Shorthand for a FirmwareStatus answer."""
    return FirmwareStatus(completion_code=code, status=state, stage=stage, revision=revision)


class FakeDeviceController:
    """Scripted DeviceController.

    ``statuses[device_id]`` is consumed one entry per get_firmware_status call;
    the last entry repeats once the script runs out. An entry may be an
    exception instance, which is raised instead of answered.
    """

    def __init__(
        self,
        statuses: Optional[dict] = None,
        start_responses: Optional[dict] = None,
    ):
        self.statuses = {k: list(v) for k, v in (statuses or {}).items()}
        self.start_responses = {k: list(v) for k, v in (start_responses or {}).items()}
        self.start_calls: list[tuple[str, str, Slot]] = []
        self.status_calls: list[str] = []

    async def start_firmware_update(self, device_id, image_ref, slot):
        self.start_calls.append((device_id, image_ref, slot))
        script = self.start_responses.get(device_id)
        if not script:
            return StartResponse(accepted=True)
        answer = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def get_firmware_status(self, device_id):
        self.status_calls.append(device_id)
        script = self.statuses.get(device_id)
        if not script:
            return status()
        answer = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def starts_for(self, device_id: str) -> list:
        return [c for c in self.start_calls if c[0] == device_id]


class FakePolicyGate:
    """PolicyGate denying a fixed set of devices."""

    def __init__(self, denied: Optional[dict] = None):
        self.denied = denied or {}

    async def is_update_allowed(self, device_id):
        if device_id in self.denied:
            return PolicyDecision(allowed=False, diagnostic=self.denied[device_id])
        return PolicyDecision(allowed=True)


def happy_script(before: str = "A0.05.03", after: str = "A0.06.03") -> list:
    """Pre-check, five-minute and twelve-minute answers of a successful update."""
    return [
        status(UpdateStatus.NOT_STARTED, "NotStarted", before),
        status(UpdateStatus.IN_PROGRESS, "WriteFirmwareImage", before),
        status(UpdateStatus.SUCCEEDED, "Completed", after),
    ]


@pytest.fixture
def clock():
    """Virtual clock starting at t=0."""
    return VirtualClock()


@pytest.fixture
def images():
    return ImageSet(primary="C:\\PsuFw\\primary_les.hex", secondary="C:\\PsuFw\\secondary_les.hex")


@pytest.fixture
def config(images):
    """Verifier config without cycle pauses."""
    return VerifierConfig(
        devices=["1", "2", "3", "4", "5", "6"],
        minimum_reserve=1,
        images={"les": images},
        cycle_pause=0.0,
    )


@pytest.fixture
def short_policy():
    """One-second cadence with a five-second budget."""
    return PollingPolicy(interval=1.0, budget=5.0)


@pytest.fixture
def transport_error():
    return TransportError("connection refused", "2")
