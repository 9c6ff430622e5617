"""Unit tests for OperationController."""

import pytest

from conftest import FakeDeviceController, FakePolicyGate, status
from fwverify.models.operation import StartResponse, UpdateRequest
from fwverify.models.status import CompletionCode, RejectReason, Slot, UpdateStatus
from fwverify.services.controller import TransportError
from fwverify.services.operation import OperationController


def _request(device_id="1", slot=Slot.PRIMARY):
    return UpdateRequest(device_id=device_id, slot=slot, image_ref="C:\\PsuFw\\primary_les.hex")


@pytest.mark.unit
class TestStartUpdate:
    """Test OperationController.start_update."""

    @pytest.mark.asyncio
    async def test_idle_device_is_started(self):
        controller = FakeDeviceController(statuses={"1": [status(revision="A0.05.03")]})
        operations = OperationController(controller)

        result = await operations.start_update("1", _request())

        assert result.accepted is True
        assert result.record.state == UpdateStatus.IN_PROGRESS
        assert result.record.revision_before == "A0.05.03"
        assert result.record.slot == Slot.PRIMARY
        assert controller.start_calls == [("1", "C:\\PsuFw\\primary_les.hex", Slot.PRIMARY)]

    @pytest.mark.asyncio
    async def test_status_read_before_start(self):
        controller = FakeDeviceController()
        operations = OperationController(controller)

        await operations.start_update("1", _request())

        assert controller.status_calls == ["1"]

    @pytest.mark.asyncio
    async def test_in_progress_device_is_busy_without_start_call(self):
        controller = FakeDeviceController(
            statuses={"1": [status(UpdateStatus.IN_PROGRESS, "WriteFirmwareImage")]}
        )
        operations = OperationController(controller)

        result = await operations.start_update("1", _request())

        assert result.accepted is False
        assert result.reason == RejectReason.DEVICE_BUSY
        assert "WriteFirmwareImage" in result.diagnostic
        assert controller.start_calls == []

    @pytest.mark.asyncio
    async def test_in_progress_completion_code_is_busy(self):
        controller = FakeDeviceController(
            statuses={"1": [status(code=CompletionCode.FIRMWARE_UPDATE_IN_PROGRESS)]}
        )
        operations = OperationController(controller)

        result = await operations.start_update("1", _request())

        assert result.reason == RejectReason.DEVICE_BUSY
        assert controller.start_calls == []

    @pytest.mark.asyncio
    async def test_powered_off_device_is_unavailable(self):
        controller = FakeDeviceController(
            statuses={"1": [status(code=CompletionCode.DEVICE_POWERED_OFF)]}
        )
        operations = OperationController(controller)

        result = await operations.start_update("1", _request())

        assert result.reason == RejectReason.DEVICE_UNAVAILABLE
        assert "DevicePoweredOff" in result.diagnostic
        assert controller.start_calls == []

    @pytest.mark.asyncio
    async def test_unauthorized_status_is_authorization_denied(self):
        controller = FakeDeviceController(
            statuses={"1": [status(code=CompletionCode.UNAUTHORIZED)]}
        )
        operations = OperationController(controller)

        result = await operations.start_update("1", _request())

        assert result.reason == RejectReason.AUTHORIZATION_DENIED
        assert controller.start_calls == []

    @pytest.mark.asyncio
    async def test_mismatched_request_is_invalid_parameter(self):
        controller = FakeDeviceController()
        operations = OperationController(controller)

        result = await operations.start_update("2", _request(device_id="1"))

        assert result.reason == RejectReason.INVALID_PARAMETER
        assert controller.status_calls == []

    @pytest.mark.asyncio
    async def test_policy_gate_denial_keeps_diagnostic_verbatim(self):
        diagnostic = "Firmware update not enabled: flag psu_fw_update=0 (rollout 12)"
        controller = FakeDeviceController()
        operations = OperationController(controller, FakePolicyGate({"1": diagnostic}))

        result = await operations.start_update("1", _request())

        assert result.reason == RejectReason.FEATURE_GATED
        assert result.diagnostic == diagnostic
        assert controller.start_calls == []

    @pytest.mark.asyncio
    async def test_policy_gate_allows(self):
        controller = FakeDeviceController()
        operations = OperationController(controller, FakePolicyGate({"2": "off"}))

        result = await operations.start_update("1", _request())

        assert result.accepted is True

    @pytest.mark.parametrize(
        "code, reason",
        [
            (CompletionCode.FIRMWARE_UPDATE_IN_PROGRESS, RejectReason.DEVICE_BUSY),
            (CompletionCode.PARAMETER_OUT_OF_RANGE, RejectReason.INVALID_PARAMETER),
            (CompletionCode.UNAUTHORIZED, RejectReason.AUTHORIZATION_DENIED),
            (CompletionCode.FAILURE, RejectReason.DEVICE_UNAVAILABLE),
            (CompletionCode.COMMAND_NOT_VALID_AT_THIS_TIME, RejectReason.DEVICE_UNAVAILABLE),
        ],
    )
    @pytest.mark.asyncio
    async def test_refused_start_maps_completion_code(self, code, reason):
        controller = FakeDeviceController(
            start_responses={
                "1": [StartResponse(accepted=False, completion_code=code, diagnostic="nope")]
            }
        )
        operations = OperationController(controller)

        result = await operations.start_update("1", _request())

        assert result.accepted is False
        assert result.reason == reason
        assert result.diagnostic == "nope"
        assert result.record is None

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        controller = FakeDeviceController(statuses={"1": [TransportError("down", "1")]})
        operations = OperationController(controller)

        with pytest.raises(TransportError):
            await operations.start_update("1", _request())


@pytest.mark.unit
class TestForceStart:
    """Test OperationController.force_start."""

    @pytest.mark.asyncio
    async def test_skips_status_precheck(self):
        controller = FakeDeviceController(
            start_responses={
                "1": [
                    StartResponse(
                        accepted=False,
                        completion_code=CompletionCode.FIRMWARE_UPDATE_IN_PROGRESS,
                    )
                ]
            }
        )
        operations = OperationController(controller)

        result = await operations.force_start("1", _request(slot=Slot.SECONDARY))

        assert result.accepted is False
        assert result.reason == RejectReason.DEVICE_BUSY
        assert controller.status_calls == []
        assert controller.start_calls[0][2] == Slot.SECONDARY

    @pytest.mark.asyncio
    async def test_accepted_second_start_has_no_record(self):
        operations = OperationController(FakeDeviceController())

        result = await operations.force_start("1", _request())

        assert result.accepted is True
        assert result.record is None
