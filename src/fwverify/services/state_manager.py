"""State manager for verifier progress and the last batch report."""

import json
import logging
from pathlib import Path
from typing import Optional

import aiofiles

from fwverify.api.models import ProgressData
from fwverify.models.report import BatchReport
from fwverify.models.status import VerifierStage


class StateManager:
    """Singleton state manager for verification runs.

    Manages:
    - In-memory status (for GET /progress endpoint)
    - Last BatchReport, persisted at ./reports/last_report.json
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls, *args, **kwargs):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, report_path: str = "./reports/last_report.json"):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("fwverify.state_manager")
        self.report_path = Path(report_path)

        self._current_stage: VerifierStage = VerifierStage.IDLE
        self._current_message: str = "Verifier ready"
        self._current_error: Optional[str] = None
        self._devices: list[str] = []

        self._last_report: Optional[BatchReport] = None

        self._initialized = True
        self.logger.info("StateManager initialized")

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint."""
        return ProgressData(
            stage=self._current_stage,
            message=self._current_message,
            devices=list(self._devices),
            error=self._current_error,
        )

    def update_status(
        self,
        stage: VerifierStage,
        message: str,
        devices: Optional[list[str]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status.

        Args:
            stage: Verifier lifecycle stage
            message: Human-readable description
            devices: Devices of the current run (unchanged if None)
            error: Error message if stage == failed
        """
        self._current_stage = stage
        self._current_message = message
        if devices is not None:
            self._devices = list(devices)
        self._current_error = error
        self.logger.debug(f"Status updated: stage={stage.value}, message={message}")

    def is_running(self) -> bool:
        return self._current_stage == VerifierStage.RUNNING

    def load_report(self) -> Optional[BatchReport]:
        """Load the last report from disk.

        Returns:
            BatchReport if the file exists and is valid, None otherwise
        """
        if not self.report_path.exists():
            self.logger.debug("No report file found")
            return None

        try:
            with open(self.report_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            report = BatchReport(**data)
            self._last_report = report
            self.logger.info(f"Loaded last report: {report.summary()}")
            return report
        except Exception as e:
            self.logger.error(f"Failed to load report file: {e}", exc_info=True)
            # Corrupted report file, drop it
            self.report_path.unlink(missing_ok=True)
            return None

    async def save_report(self, report: BatchReport) -> None:
        """Keep ``report`` as the last report and persist it.

        Raises:
            OSError: If the report file cannot be written
        """
        self._last_report = report
        try:
            self.report_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.report_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(report.model_dump(mode="json"), indent=2))
            self.logger.debug(f"Saved report to {self.report_path}")
        except Exception as e:
            self.logger.error(f"Failed to save report file: {e}", exc_info=True)
            raise

    def get_last_report(self) -> Optional[BatchReport]:
        """Last report without reloading from disk."""
        return self._last_report

    def reset(self) -> None:
        """Reset to idle."""
        self._current_stage = VerifierStage.IDLE
        self._current_message = "Verifier ready"
        self._current_error = None
        self._devices = []
        self._last_report = None
        self.logger.info("State reset to idle")
