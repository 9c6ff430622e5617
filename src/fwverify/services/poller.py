"""Time-boxed polling of one device's firmware update status."""

import logging
from typing import AsyncIterator, Optional
from pydantic import BaseModel, Field

from fwverify.models.config import PollingPolicy
from fwverify.models.operation import OperationRecord, PollResult
from fwverify.services.controller import DeviceController, bounded_call
from fwverify.utils.clock import Clock, MonotonicClock


class PollHistory(BaseModel):
    """All samples of one polling run; timed_out if no terminal status was seen."""

    samples: list[PollResult] = Field(default_factory=list)
    timed_out: bool = False

    @property
    def last(self) -> Optional[PollResult]:
        return self.samples[-1] if self.samples else None


class PollScheduler:
    """Samples update status on a fixed cadence until terminal or out of budget.

    Every call to wait_for_terminal builds an independent sequence, so each
    device can be polled from its own task without affecting the others.
    """

    def __init__(
        self,
        controller: DeviceController,
        clock: Optional[Clock] = None,
        rpc_timeout: float = 30.0,
    ):
        """Initialize poll scheduler.

        Args:
            controller: Device RPC collaborator
            clock: Time source (real monotonic clock if None)
            rpc_timeout: Bound on each status query in seconds
        """
        self.logger = logging.getLogger("fwverify.poller")
        self.controller = controller
        self.clock = clock or MonotonicClock()
        self.rpc_timeout = rpc_timeout

    async def sample(
        self, device_id: str, sequence: int = 0, elapsed: float = 0.0
    ) -> PollResult:
        """Take one status sample without waiting.

        Raises:
            TransportError: If the device controller cannot be reached
        """
        status = await bounded_call(
            self.controller.get_firmware_status(device_id), self.rpc_timeout, device_id
        )
        result = PollResult.from_status(sequence, elapsed, status)
        self.logger.info(
            f"GetFirmwareStatus for device {device_id} after {elapsed:.0f}s - "
            f"{result.describe()}"
        )
        return result

    async def wait_for_terminal(
        self,
        device_id: str,
        policy: PollingPolicy,
        record: Optional[OperationRecord] = None,
    ) -> AsyncIterator[PollResult]:
        """Yield samples until a terminal status or the end of the budget.

        The first sample is taken ``policy.first_delay`` seconds after the call,
        later ones on the ``policy.interval`` cadence. Two samples are never
        closer than ``interval``; if a query runs late the next one is pushed
        back rather than taken early. No sample is scheduled past
        ``policy.budget``.

        Args:
            device_id: Device to poll
            policy: Cadence and budget
            record: Optional OperationRecord that observes every sample

        Yields:
            PollResult in sampling order
        """
        start = self.clock.now()
        scheduled = policy.first_delay
        last_taken: Optional[float] = None
        sequence = 0

        while scheduled <= policy.budget:
            wake = start + scheduled
            if last_taken is not None:
                wake = max(wake, last_taken + policy.interval)
            delay = wake - self.clock.now()
            if delay > 0:
                self.logger.debug(f"Device {device_id}: sleeping {delay:.0f}s")
                await self.clock.sleep(delay)

            last_taken = self.clock.now()
            result = await self.sample(device_id, sequence, last_taken - start)
            if record is not None:
                record.observe(result)
            yield result

            if result.status.is_terminal:
                return
            sequence += 1
            scheduled += policy.interval

        self.logger.warning(
            f"Device {device_id}: no terminal status within {policy.budget:.0f}s"
        )

    async def collect(
        self,
        device_id: str,
        policy: PollingPolicy,
        record: Optional[OperationRecord] = None,
    ) -> PollHistory:
        """Run wait_for_terminal to the end and return the full history."""
        history = PollHistory()
        async for result in self.wait_for_terminal(device_id, policy, record):
            history.samples.append(result)
        history.timed_out = history.last is None or not history.last.status.is_terminal
        return history
