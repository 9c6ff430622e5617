"""Status enums for firmware update verification."""

from enum import Enum


class Slot(str, Enum):
    """Firmware image slot targeted by an update."""

    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def is_primary(self) -> bool:
        return self is Slot.PRIMARY

    def other(self) -> "Slot":
        return Slot.SECONDARY if self is Slot.PRIMARY else Slot.PRIMARY


class UpdateStatus(str, Enum):
    """Overall firmware update status as reported by the device.

    State transitions:
    NotStarted → InProgress → Success
                     ↓
                   Failed
    """

    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Success"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UpdateStatus.SUCCEEDED, UpdateStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position along the lifecycle; both terminal states share a rank."""
        return {
            UpdateStatus.NOT_STARTED: 0,
            UpdateStatus.IN_PROGRESS: 1,
            UpdateStatus.SUCCEEDED: 2,
            UpdateStatus.FAILED: 2,
        }[self]


class CompletionCode(str, Enum):
    """Completion code returned with every chassis manager response."""

    SUCCESS = "Success"
    FAILURE = "Failure"
    TIMEOUT = "Timeout"
    UNKNOWN = "Unknown"
    PARAMETER_OUT_OF_RANGE = "ParameterOutOfRange"
    DEVICE_POWERED_OFF = "DevicePoweredOff"
    COMMAND_NOT_VALID_AT_THIS_TIME = "CommandNotValidAtThisTime"
    FIRMWARE_UPDATE_IN_PROGRESS = "PSUFirmwareUpdateInProgress"
    UNAUTHORIZED = "Unauthorized"

    @classmethod
    def parse(cls, value) -> "CompletionCode":
        """Map a raw completion code string, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class RejectReason(str, Enum):
    """Why a start-update request was not accepted."""

    DEVICE_BUSY = "DeviceBusy"
    DEVICE_UNAVAILABLE = "DeviceUnavailable"
    INVALID_PARAMETER = "InvalidParameter"
    AUTHORIZATION_DENIED = "AuthorizationDenied"
    FEATURE_GATED = "FeatureGated"


class OutcomeKind(str, Enum):
    """Per-device verdict."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timedOut"


class VerifierStage(str, Enum):
    """Lifecycle of the verifier service itself.

    idle → running → completed
              ↓
            failed
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Stage catalogue of the dual-image PSU update, in execution order.
DEFAULT_STAGE_ORDER = (
    "NotStarted",
    "ReadFirmwareImageFile",
    "ExtractModelId",
    "EnterFirmwareUpgradeMode",
    "SendModelId",
    "WriteFirmwareImage",
    "VerifyFirmwareImage",
    "ExitFirmwareUpgradeMode",
    "Completed",
)

COMPLETION_STAGE = "Completed"
