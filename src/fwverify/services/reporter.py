"""Publishes batch reports to an optional callback endpoint."""

import logging
from typing import Optional

import httpx

from fwverify.models.report import BatchReport


class ReportService:
    """Posts finished BatchReports to a callback URL."""

    def __init__(self, callback_url: Optional[str] = None):
        """Initialize report service.

        Args:
            callback_url: Endpoint receiving report JSON (publishing disabled if None)
        """
        self.logger = logging.getLogger("fwverify.reporter")
        self.callback_url = callback_url

    async def publish(self, report: BatchReport) -> bool:
        """Send ``report`` to the callback URL.

        Returns:
            True if the callback accepted the report

        Note:
            Failures are logged but not raised
        """
        if not self.callback_url:
            self.logger.debug("No callback URL configured, report not published")
            return False

        self.logger.debug(f"Publishing report to {self.callback_url}: {report.summary()}")

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(
                    self.callback_url,
                    json=report.model_dump(mode="json"),
                )
                response.raise_for_status()
                self.logger.debug("Report published successfully")
                return True

        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to publish report to {self.callback_url}: {e}")
        except Exception as e:
            self.logger.error(f"Unexpected error publishing report: {e}", exc_info=True)
        return False
