"""Unit tests for PollScheduler."""

import asyncio

import pytest

from conftest import FakeDeviceController, status
from fwverify.models.config import DEFAULT_POLICY, PollingPolicy
from fwverify.models.operation import OperationRecord
from fwverify.models.status import Slot, UpdateStatus
from fwverify.services.controller import TransportError
from fwverify.services.poller import PollScheduler
from fwverify.utils.clock import VirtualClock


IP = UpdateStatus.IN_PROGRESS


@pytest.mark.unit
class TestPollScheduler:
    """Test PollScheduler against a virtual clock."""

    @pytest.mark.asyncio
    async def test_stops_at_first_terminal_sample(self, clock, short_policy):
        controller = FakeDeviceController(
            statuses={
                "1": [
                    status(IP, "WriteFirmwareImage"),
                    status(IP, "VerifyFirmwareImage"),
                    status(UpdateStatus.SUCCEEDED, "Completed", "A0.06.03"),
                    status(IP, "NotStarted"),
                ]
            }
        )
        scheduler = PollScheduler(controller, clock=clock)

        history = await scheduler.collect("1", short_policy)

        assert [s.status for s in history.samples] == [IP, IP, UpdateStatus.SUCCEEDED]
        assert history.timed_out is False
        assert len(controller.status_calls) == 3

    @pytest.mark.asyncio
    async def test_samples_on_interval_cadence(self, clock, short_policy):
        controller = FakeDeviceController(statuses={"1": [status(IP, "WriteFirmwareImage")]})
        scheduler = PollScheduler(controller, clock=clock)

        history = await scheduler.collect("1", short_policy)

        assert [s.elapsed for s in history.samples] == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert [s.sequence for s in history.samples] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_budget_exhausted_marks_timed_out(self, clock, short_policy):
        controller = FakeDeviceController(statuses={"1": [status(IP, "WriteFirmwareImage")]})
        scheduler = PollScheduler(controller, clock=clock)

        history = await scheduler.collect("1", short_policy)

        assert history.timed_out is True
        assert history.last.status == IP
        assert clock.now() == 5.0

    @pytest.mark.asyncio
    async def test_default_policy_checks_at_five_and_twelve_minutes(self, clock):
        controller = FakeDeviceController(statuses={"1": [status(IP, "WriteFirmwareImage")]})
        scheduler = PollScheduler(controller, clock=clock)

        history = await scheduler.collect("1", DEFAULT_POLICY)

        assert [s.elapsed for s in history.samples] == [300.0, 720.0]
        assert history.timed_out is True

    @pytest.mark.asyncio
    async def test_no_sample_scheduled_past_budget(self, clock):
        policy = PollingPolicy(interval=4.0, budget=10.0, initial_delay=3.0)
        controller = FakeDeviceController(statuses={"1": [status(IP, "WriteFirmwareImage")]})
        scheduler = PollScheduler(controller, clock=clock)

        history = await scheduler.collect("1", policy)

        assert [s.elapsed for s in history.samples] == [3.0, 7.0]

    @pytest.mark.asyncio
    async def test_late_clock_pushes_next_sample_back(self):
        """Samples are never closer together than the interval."""

        class SlowController(FakeDeviceController):
            async def get_firmware_status(self, device_id):
                clock.advance(3.0)
                return await super().get_firmware_status(device_id)

        clock = VirtualClock()
        controller = SlowController(statuses={"1": [status(IP, "WriteFirmwareImage")]})
        scheduler = PollScheduler(controller, clock=clock)

        history = await scheduler.collect("1", PollingPolicy(interval=2.0, budget=6.0))

        gaps = [b.elapsed - a.elapsed for a, b in zip(history.samples, history.samples[1:])]
        assert all(gap >= 2.0 for gap in gaps)

    @pytest.mark.asyncio
    async def test_record_observes_every_sample(self, clock, short_policy):
        controller = FakeDeviceController(
            statuses={
                "1": [
                    status(IP, "WriteFirmwareImage", "A0.05.03"),
                    status(UpdateStatus.SUCCEEDED, "Completed", "A0.06.03"),
                ]
            }
        )
        record = OperationRecord(device_id="1", slot=Slot.PRIMARY, revision_before="A0.05.03")
        scheduler = PollScheduler(controller, clock=clock)

        await scheduler.collect("1", short_policy, record)

        assert len(record.history) == 2
        assert record.state == UpdateStatus.SUCCEEDED
        assert record.stage == "Completed"
        assert record.revision_after == "A0.06.03"

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, clock, short_policy):
        controller = FakeDeviceController(
            statuses={"1": [TransportError("connection refused", "1")]}
        )
        scheduler = PollScheduler(controller, clock=clock)

        with pytest.raises(TransportError, match="TRANSPORT_ERROR"):
            await scheduler.collect("1", short_policy)

    @pytest.mark.asyncio
    async def test_devices_polled_independently(self, clock, short_policy):
        """A fast device finishing does not stop a slow one."""
        controller = FakeDeviceController(
            statuses={
                "1": [status(UpdateStatus.SUCCEEDED, "Completed")],
                "2": [
                    status(IP, "WriteFirmwareImage"),
                    status(IP, "WriteFirmwareImage"),
                    status(UpdateStatus.FAILED, "VerifyFirmwareImage"),
                ],
            }
        )
        scheduler = PollScheduler(controller, clock=clock)

        fast, slow = await asyncio.gather(
            scheduler.collect("1", short_policy),
            scheduler.collect("2", short_policy),
        )

        assert len(fast.samples) == 1
        assert [s.elapsed for s in slow.samples] == [1.0, 2.0, 3.0]
        assert slow.last.status == UpdateStatus.FAILED

    @pytest.mark.asyncio
    async def test_sample_is_bounded_by_rpc_timeout(self, short_policy):
        class HangingController(FakeDeviceController):
            async def get_firmware_status(self, device_id):
                await asyncio.sleep(10)

        scheduler = PollScheduler(HangingController(), rpc_timeout=0.01)

        with pytest.raises(TransportError, match="No answer"):
            await scheduler.sample("1")
