"""Collaborator interfaces and the chassis manager HTTP adapter.

The verifier only talks to devices through these interfaces. Transport
failures surface as TransportError; every answer the device gives, including
an authorization denial, comes back as a typed value.
"""

import asyncio
import logging
import random
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError

from fwverify.models.operation import FirmwareStatus, PolicyDecision, StartResponse
from fwverify.models.status import CompletionCode, Slot, UpdateStatus

# HTTP statuses the chassis manager uses to refuse a caller. An unauthorized
# UpdatePSUFirmware is answered with 400.
DENIED_HTTP_STATUSES = (400, 401, 403)


class TransportError(Exception):
    """The device controller itself could not be reached."""

    def __init__(self, message: str, device_id: Optional[str] = None):
        super().__init__(f"TRANSPORT_ERROR: {message}")
        self.device_id = device_id


class BatchSelectionError(ValueError):
    """A batch would violate the selection policy; raised before any start call."""

    def __init__(self, message: str):
        super().__init__(f"SELECTION_REFUSED: {message}")


class DeviceController(Protocol):
    """Remote firmware operations of a managed device."""

    async def start_firmware_update(
        self, device_id: str, image_ref: str, slot: Slot
    ) -> StartResponse: ...

    async def get_firmware_status(self, device_id: str) -> FirmwareStatus: ...


class PolicyGate(Protocol):
    """External feature flag deciding whether a device may be updated."""

    async def is_update_allowed(self, device_id: str) -> PolicyDecision: ...


class Inventory(Protocol):
    """Device discovery and reserve-aware selection."""

    async def available(self, kind: str) -> list[str]: ...

    async def select_devices(
        self, kind: str, count: int, minimum_reserve: int
    ) -> list[str]: ...


class StaticInventory:
    """Inventory over a fixed list of device ids."""

    def __init__(self, device_ids: list[str], kind: str = "psu"):
        self.logger = logging.getLogger("fwverify.inventory")
        self.device_ids = list(device_ids)
        self.kind = kind

    async def available(self, kind: str) -> list[str]:
        if kind != self.kind:
            return []
        return list(self.device_ids)

    async def select_devices(
        self, kind: str, count: int, minimum_reserve: int
    ) -> list[str]:
        """Pick ``count`` random devices, leaving at least ``minimum_reserve`` out.

        Raises:
            BatchSelectionError: If there are not enough devices
        """
        available = await self.available(kind)
        if count < 1:
            raise BatchSelectionError(f"Cannot select {count} devices")
        if len(available) < count + minimum_reserve:
            raise BatchSelectionError(
                f"There are not enough {kind} devices to run tests: "
                f"{len(available)} available, {count} requested, "
                f"{minimum_reserve} reserved"
            )
        selected = random.sample(available, count)
        self.logger.info(f"Selected {kind} devices {selected} out of {available}")
        return selected


class HttpDeviceController:
    """DeviceController speaking to the chassis manager REST service."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """Initialize controller.

        Args:
            base_url: Chassis manager base URL
            username: Basic auth user (no auth if None)
            password: Basic auth password
            timeout: Per-request timeout in seconds
        """
        self.logger = logging.getLogger("fwverify.controller")
        self.base_url = base_url.rstrip("/")
        self.auth = (username, password or "") if username else None
        self.timeout = timeout

    async def start_firmware_update(
        self, device_id: str, image_ref: str, slot: Slot
    ) -> StartResponse:
        """Call UpdatePSUFirmware for one device."""
        params = {
            "psuId": device_id,
            "fwFilepath": image_ref,
            "primaryImage": "true" if slot is Slot.PRIMARY else "false",
        }
        body = await self._get("UpdatePSUFirmware", params, device_id)
        code = CompletionCode.parse(body.get("completionCode"))
        return self._build(
            StartResponse,
            "UpdatePSUFirmware",
            device_id,
            accepted=code == CompletionCode.SUCCESS,
            completion_code=code,
            diagnostic=body.get("statusDescription") or "",
        )

    async def get_firmware_status(self, device_id: str) -> FirmwareStatus:
        """Call GetPSUFirmwareStatus for one device."""
        body = await self._get("GetPSUFirmwareStatus", {"psuId": device_id}, device_id)
        code = CompletionCode.parse(body.get("completionCode"))
        diagnostic = body.get("statusDescription") or ""

        raw_status = body.get("fwUpdateStatus") or UpdateStatus.NOT_STARTED.value
        try:
            status = UpdateStatus(raw_status)
        except ValueError:
            self.logger.warning(
                f"Device {device_id} reported unknown update status {raw_status!r}"
            )
            code = CompletionCode.UNKNOWN
            status = UpdateStatus.NOT_STARTED
            diagnostic = f"Unknown fwUpdateStatus {raw_status!r}"

        return self._build(
            FirmwareStatus,
            "GetPSUFirmwareStatus",
            device_id,
            completion_code=code,
            status=status,
            stage=body.get("fwUpdateStage") or "NotStarted",
            revision=body.get("fwRevision") or "",
            diagnostic=diagnostic,
        )

    async def _get(self, operation: str, params: dict, device_id: str) -> dict:
        """Issue one GET and return the JSON object it answered with.

        Any 4xx answer comes back as a body carrying a completion code:
        ``Unauthorized`` for a refused caller, ``Failure`` otherwise.

        Raises:
            TransportError: On connection failure, timeout, HTTP 5xx or a body
                that is not a JSON object
        """
        url = f"{self.base_url}/{operation}"
        self.logger.debug(f"{operation} for device {device_id}: {params}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, auth=self.auth) as client:
                response = await client.get(url, params=params)
                if 400 <= response.status_code < 500:
                    return self._refusal(operation, device_id, response)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{operation} returned HTTP {e.response.status_code}", device_id
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{operation} failed: {e}", device_id) from e
        except ValueError as e:
            raise TransportError(f"{operation} returned invalid JSON: {e}", device_id) from e

        if not isinstance(body, dict):
            raise TransportError(
                f"{operation} returned a JSON {type(body).__name__}, expected an object",
                device_id,
            )
        return body

    def _refusal(self, operation: str, device_id: str, response) -> dict:
        if response.status_code in DENIED_HTTP_STATUSES:
            code = CompletionCode.UNAUTHORIZED
        else:
            code = CompletionCode.FAILURE
        text = (response.text or "").strip()
        self.logger.warning(
            f"{operation} refused for device {device_id}: HTTP {response.status_code} {text}"
        )
        detail = f"HTTP {response.status_code}"
        return {
            "completionCode": code.value,
            "statusDescription": f"{detail}: {text}" if text else detail,
        }

    def _build(self, model, operation: str, device_id: str, **fields):
        """Construct the reply model; a field of the wrong type is a broken reply."""
        try:
            return model(**fields)
        except ValidationError as e:
            raise TransportError(
                f"{operation} returned a malformed reply: {e.errors()[0]['msg']}", device_id
            ) from e


async def bounded_call(call, timeout: float, device_id: Optional[str] = None):
    """Await ``call`` for at most ``timeout`` seconds.

    Raises:
        TransportError: If no answer arrives in time
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransportError(f"No answer within {timeout}s", device_id) from e
