"""Concurrent verification of firmware updates across a batch of devices."""

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from fwverify.models.config import ImageSet, PollingPolicy, VerifierConfig
from fwverify.models.operation import OperationRecord, UpdateRequest
from fwverify.models.report import BatchReport, CycleSummary, Outcome
from fwverify.models.status import OutcomeKind, RejectReason, Slot, UpdateStatus
from fwverify.services.controller import (
    BatchSelectionError,
    DeviceController,
    Inventory,
    PolicyGate,
    TransportError,
)
from fwverify.services.operation import OperationController
from fwverify.services.poller import PollScheduler
from fwverify.services.stage_verifier import StageVerifier
from fwverify.utils.clock import Clock, MonotonicClock
from fwverify.utils.revision import check_revision

RequestFactory = Callable[[str], UpdateRequest]
ReportCallback = Callable[[BatchReport], Awaitable[None]]

REVISION_INVARIANT_VIOLATION = "REVISION_INVARIANT_VIOLATION"
DOUBLE_START_ACCEPTED = "DOUBLE_START_ACCEPTED"


class BatchTransportError(TransportError):
    """One or more devices could not be reached during a batch.

    Raised after every sibling has settled; ``outcomes`` holds the verdicts of
    the devices that were not affected.
    """

    def __init__(self, errors: list[TransportError], outcomes: list[Outcome]):
        devices = ", ".join(str(e.device_id) for e in errors)
        super().__init__(f"Device controller unreachable for {devices}: {errors[0]}")
        self.errors = errors
        self.outcomes = outcomes


def request_factory_for(slot: Slot, images: ImageSet) -> RequestFactory:
    """Factory building UpdateRequests for ``slot`` from an image set."""

    def factory(device_id: str) -> UpdateRequest:
        return UpdateRequest(device_id=device_id, slot=slot, image_ref=images.for_slot(slot))

    return factory


def split_request_factory(
    primary_devices: list[str], images: ImageSet
) -> RequestFactory:
    """Factory updating the primary image on ``primary_devices`` and the secondary elsewhere."""
    primary = set(primary_devices)

    def factory(device_id: str) -> UpdateRequest:
        slot = Slot.PRIMARY if device_id in primary else Slot.SECONDARY
        return UpdateRequest(device_id=device_id, slot=slot, image_ref=images.for_slot(slot))

    return factory


class BatchCoordinator:
    """Runs start → poll → stage check → revision check for every device in a batch.

    Each device is verified in its own task and produces its own Outcome; the
    report is assembled only after all of them settle. A rejection, failure or
    timeout on one device never cancels or delays another.
    """

    def __init__(
        self,
        controller: DeviceController,
        inventory: Inventory,
        config: Optional[VerifierConfig] = None,
        policy_gate: Optional[PolicyGate] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize batch coordinator.

        Args:
            controller: Device RPC collaborator
            inventory: Device discovery collaborator
            config: Verifier configuration (defaults if None)
            policy_gate: Optional feature gate consulted before each start
            clock: Time source for polling (real clock if None)
        """
        self.logger = logging.getLogger("fwverify.coordinator")
        self.config = config or VerifierConfig()
        self.inventory = inventory
        self.clock = clock or MonotonicClock()
        self.operations = OperationController(
            controller, policy_gate, rpc_timeout=self.config.rpc_timeout
        )
        self.poller = PollScheduler(
            controller, clock=self.clock, rpc_timeout=self.config.rpc_timeout
        )

    async def select_batch(self, count: int, minimum_reserve: Optional[int] = None) -> list[str]:
        """Ask the inventory for ``count`` devices, keeping the reserve out."""
        reserve = self.config.minimum_reserve if minimum_reserve is None else minimum_reserve
        return await self.inventory.select_devices(self.config.device_kind, count, reserve)

    async def run_batch(
        self,
        devices: list[str],
        request_factory: RequestFactory,
        policy: Optional[PollingPolicy] = None,
        minimum_reserve: Optional[int] = None,
    ) -> BatchReport:
        """Verify a firmware update on every device of the batch concurrently.

        Args:
            devices: Device ids to update
            request_factory: Builds the UpdateRequest for a device id
            policy: Polling cadence and budget (config default if None)
            minimum_reserve: Devices that must stay out of the batch (config default if None)

        Returns:
            BatchReport with exactly one Outcome per selected device

        Raises:
            BatchSelectionError: If the selection is refused; no device was touched
            BatchTransportError: If the device controller was unreachable for any device
        """
        policy = policy or self.config.polling
        reserve = self.config.minimum_reserve if minimum_reserve is None else minimum_reserve
        await self.check_selection(devices, reserve)

        started_at = datetime.now()
        self.logger.info(
            f"Starting batch for devices {devices}: first check after "
            f"{policy.first_delay:.0f}s, interval {policy.interval:.0f}s, "
            f"budget {policy.budget:.0f}s"
        )

        results = await asyncio.gather(
            *(self._verify_device(device_id, request_factory, policy) for device_id in devices),
            return_exceptions=True,
        )

        outcomes: list[Outcome] = []
        errors: list[TransportError] = []
        for device_id, result in zip(devices, results):
            if isinstance(result, TransportError):
                self.logger.error(f"Device {device_id}: {result}")
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(result)

        if errors:
            raise BatchTransportError(errors, outcomes)

        if all(o.is_skipped for o in outcomes):
            self.logger.error("No device is available for update, batch not polled")

        report = BatchReport.merge(outcomes, started_at)
        for outcome in report.outcomes.values():
            log = self.logger.info if outcome.kind == OutcomeKind.PASSED else self.logger.warning
            log(outcome.describe())
        self.logger.info(report.summary())
        return report

    async def run_cycles(
        self,
        devices: list[str],
        cycles: int,
        images: Optional[ImageSet] = None,
        policy: Optional[PollingPolicy] = None,
        minimum_reserve: Optional[int] = None,
        on_report: Optional[ReportCallback] = None,
    ) -> CycleSummary:
        """Repeat batches alternating primary (even cycles) and secondary (odd cycles).

        ``on_report`` is awaited with each cycle's report as soon as that
        cycle settles, so finished cycles survive an abort of a later one.

        Raises:
            BatchSelectionError: If the selection is refused
            BatchTransportError: Aborts the remaining cycles
        """
        images = images or self.config.image_set()
        summary = CycleSummary()
        for cycle in range(cycles):
            slot = Slot.PRIMARY if cycle % 2 == 0 else Slot.SECONDARY
            if self.config.cycle_pause:
                self.logger.info(
                    f"Sleeping {self.config.cycle_pause:.0f}s before test cycle {cycle}"
                )
                await self.clock.sleep(self.config.cycle_pause)

            self.logger.info(
                f"Update test cycle {cycle} for devices {devices}: "
                f"slot={slot.value}, image={images.for_slot(slot)}"
            )
            report = await self.run_batch(
                devices, request_factory_for(slot, images), policy, minimum_reserve
            )
            summary.record(slot, report)
            if on_report is not None:
                await on_report(report)

        for device_id, counts in summary.success_counts.items():
            self.logger.info(
                f"Device {device_id}: {counts[Slot.PRIMARY]} primary and "
                f"{counts[Slot.SECONDARY]} secondary updates successful"
            )
        return summary

    async def check_selection(self, devices: list[str], reserve: int) -> None:
        """Refuse batches that are empty, repeat a device or eat into the reserve.

        Raises:
            BatchSelectionError: If the batch may not run
        """
        if not devices:
            raise BatchSelectionError("No devices selected")
        if len(set(devices)) != len(devices):
            raise BatchSelectionError(f"Device selected more than once: {devices}")

        available = await self.inventory.available(self.config.device_kind)
        unknown = [d for d in devices if d not in available]
        if unknown:
            raise BatchSelectionError(f"Devices not available: {unknown}")

        left_out = len(available) - len(devices)
        if left_out < reserve:
            raise BatchSelectionError(
                f"Batch of {len(devices)} leaves {left_out} of {len(available)} "
                f"devices operative, at least {reserve} required"
            )

    async def _verify_device(
        self, device_id: str, request_factory: RequestFactory, policy: PollingPolicy
    ) -> Outcome:
        """Full pipeline for one device; never raises for device-side problems."""
        try:
            request = request_factory(device_id)
        except ValidationError as e:
            self.logger.warning(f"Device {device_id}: invalid update request: {e}")
            return Outcome.skipped(device_id, RejectReason.INVALID_PARAMETER.value, str(e))

        start = await self.operations.start_update(device_id, request)
        if not start.accepted:
            return Outcome.skipped(device_id, start.reason.value, start.diagnostic)

        record = start.record
        verifier = StageVerifier(
            self.config.stage_order, self.config.completion_stage, policy.progress_check
        )
        probe_pending = self.config.probe_busy_guard

        async with aclosing(self.poller.wait_for_terminal(device_id, policy, record)) as samples:
            async for sample in samples:
                if verifier.observe(sample) is not None:
                    break
                if probe_pending and sample.status == UpdateStatus.IN_PROGRESS:
                    probe_pending = False
                    failure = await self._probe_busy_guard(device_id, request, record)
                    if failure is not None:
                        return failure

        verdict = verifier.verdict()
        if verdict.violation is not None:
            return Outcome.failed(device_id, verdict.violation, verdict.diagnostic, record)
        if not verdict.terminal:
            return Outcome.timed_out(
                device_id,
                f"No terminal status within {policy.budget:.0f}s, last seen "
                f"{verdict.state.value} at stage {verdict.stage}",
                record,
            )

        revision = check_revision(
            record.revision_before or "", record.revision_after or "", record.slot
        )
        if not revision.passed:
            return Outcome.failed(device_id, REVISION_INVARIANT_VIOLATION, revision.detail, record)
        return Outcome.passed(device_id, revision.detail, record)

    async def _probe_busy_guard(
        self, device_id: str, request: UpdateRequest, record: OperationRecord
    ) -> Optional[Outcome]:
        """A second start while InProgress must be refused by the device."""
        probe = request.model_copy(update={"slot": request.slot.other()})
        result = await self.operations.force_start(device_id, probe)
        if result.accepted:
            return Outcome.failed(
                device_id,
                DOUBLE_START_ACCEPTED,
                f"Device accepted a {probe.slot.value} update while one was in progress",
                record,
            )
        self.logger.info(
            f"Device {device_id} refused a second update while in progress: "
            f"{result.reason.value}"
        )
        return None
