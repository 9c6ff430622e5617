"""Start-update control with precondition checks."""

import logging
from typing import Optional

from fwverify.models.operation import (
    FirmwareStatus,
    OperationRecord,
    StartResponse,
    StartResult,
    UpdateRequest,
)
from fwverify.models.status import CompletionCode, RejectReason, UpdateStatus
from fwverify.services.controller import DeviceController, PolicyGate, bounded_call


# Completion codes of a refused start, mapped to the rejection they mean.
START_REJECTIONS = {
    CompletionCode.FIRMWARE_UPDATE_IN_PROGRESS: RejectReason.DEVICE_BUSY,
    CompletionCode.PARAMETER_OUT_OF_RANGE: RejectReason.INVALID_PARAMETER,
    CompletionCode.UNAUTHORIZED: RejectReason.AUTHORIZATION_DENIED,
}


class OperationController:
    """Issues the start-update request for one device at a time."""

    def __init__(
        self,
        controller: DeviceController,
        policy_gate: Optional[PolicyGate] = None,
        rpc_timeout: float = 30.0,
    ):
        """Initialize operation controller.

        Args:
            controller: Device RPC collaborator
            policy_gate: Optional feature gate consulted before every start
            rpc_timeout: Bound on each remote call in seconds
        """
        self.logger = logging.getLogger("fwverify.operation")
        self.controller = controller
        self.policy_gate = policy_gate
        self.rpc_timeout = rpc_timeout

    async def start_update(self, device_id: str, request: UpdateRequest) -> StartResult:
        """Start a firmware update after checking the device is idle.

        The current status is always read first. A device that already reports
        InProgress is rejected with DeviceBusy and never receives a start call.

        Args:
            device_id: Device to update
            request: Slot and image to flash

        Returns:
            StartResult; accepted results carry an InProgress OperationRecord

        Raises:
            TransportError: If the device controller cannot be reached
        """
        if request.device_id != device_id:
            return self._reject(
                device_id,
                RejectReason.INVALID_PARAMETER,
                f"Request targets device {request.device_id}, not {device_id}",
            )

        before = await self.read_status(device_id)
        self.logger.info(
            f"GetFirmwareStatus for device {device_id} before update - "
            f"fwRevision: {before.revision} completionCode: {before.completion_code.value} "
            f"fwUpdateStatus: {before.status.value} fwUpdateStage: {before.stage}"
        )

        if before.completion_code == CompletionCode.UNAUTHORIZED:
            return self._reject(
                device_id, RejectReason.AUTHORIZATION_DENIED, before.diagnostic
            )
        if before.status == UpdateStatus.IN_PROGRESS or (
            before.completion_code == CompletionCode.FIRMWARE_UPDATE_IN_PROGRESS
        ):
            return self._reject(
                device_id,
                RejectReason.DEVICE_BUSY,
                f"Update already in progress at stage {before.stage}",
            )
        if before.completion_code != CompletionCode.SUCCESS:
            return self._reject(
                device_id,
                RejectReason.DEVICE_UNAVAILABLE,
                f"Status query returned {before.completion_code.value}"
                + (f": {before.diagnostic}" if before.diagnostic else ""),
            )

        if self.policy_gate is not None:
            decision = await bounded_call(
                self.policy_gate.is_update_allowed(device_id),
                self.rpc_timeout,
                device_id,
            )
            if not decision.allowed:
                # Diagnostic text is passed through untouched.
                return self._reject(
                    device_id, RejectReason.FEATURE_GATED, decision.diagnostic
                )

        response = await bounded_call(
            self.controller.start_firmware_update(
                device_id, request.image_ref, request.slot
            ),
            self.rpc_timeout,
            device_id,
        )
        self.logger.info(
            f"Device {device_id} returned completion code {response.completion_code.value} "
            f"and status description {response.diagnostic!r}"
        )

        if not response.accepted:
            return self._reject(
                device_id, self._rejection_for(response), response.diagnostic
            )

        record = OperationRecord(
            device_id=device_id,
            slot=request.slot,
            state=UpdateStatus.IN_PROGRESS,
            stage=before.stage,
            revision_before=before.revision,
        )
        self.logger.info(
            f"Update accepted for device {device_id}: slot={request.slot.value}, "
            f"image={request.image_ref}, revision before={before.revision}"
        )
        return StartResult.accept(record, response.diagnostic)

    async def force_start(self, device_id: str, request: UpdateRequest) -> StartResult:
        """Send a start request without the idle precondition.

        Only used to check that the device itself refuses a second update
        while one is running; the result carries no OperationRecord.
        """
        response = await bounded_call(
            self.controller.start_firmware_update(
                device_id, request.image_ref, request.slot
            ),
            self.rpc_timeout,
            device_id,
        )
        self.logger.info(
            f"Second start on device {device_id} returned completion code "
            f"{response.completion_code.value} and status description {response.diagnostic!r}"
        )
        if response.accepted:
            return StartResult(accepted=True, diagnostic=response.diagnostic)
        return StartResult.reject(self._rejection_for(response), response.diagnostic)

    async def read_status(self, device_id: str) -> FirmwareStatus:
        """Single bounded status query."""
        return await bounded_call(
            self.controller.get_firmware_status(device_id), self.rpc_timeout, device_id
        )

    @staticmethod
    def _rejection_for(response: StartResponse) -> RejectReason:
        return START_REJECTIONS.get(
            response.completion_code, RejectReason.DEVICE_UNAVAILABLE
        )

    def _reject(self, device_id: str, reason: RejectReason, diagnostic: str) -> StartResult:
        # DeviceBusy is an expected answer, not a defect.
        log = self.logger.info if reason == RejectReason.DEVICE_BUSY else self.logger.warning
        log(f"Device {device_id} not ready for update: {reason.value} {diagnostic}")
        return StartResult.reject(reason, diagnostic)
