"""Waste detector client.

The detection scan itself runs elsewhere; this module only fetches its output.
"""

from abc import ABC, abstractmethod

import httpx
import structlog

from costguard.core.config import Settings
from costguard.core.errors import StoreError
from costguard.schemas.detection import DetectionResult

logger = structlog.get_logger()


class DetectorClient(ABC):
    @abstractmethod
    async def detect_all(self) -> DetectionResult:
        """Run (or fetch) a full detection pass."""
        pass


class HttpDetectorClient(DetectorClient):
    """Calls a detector service exposing `POST {base_url}/detect`."""

    def __init__(self, base_url: str, timeout: float = 60.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpDetectorClient | None":
        if not settings.DETECTOR_URL:
            return None
        return cls(settings.DETECTOR_URL, settings.DETECTOR_TIMEOUT_SECONDS)

    async def detect_all(self) -> DetectionResult:
        """
        Fetch detections from the detector service.

        Raises:
            StoreError: If the detector is unreachable or returns an error
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/detect")
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("detector.request_failed", url=self.base_url, error=str(e))
            raise StoreError(f"Detector request failed: {e}") from e

        result = DetectionResult.model_validate(data)
        logger.info("detector.detections_fetched", count=len(result.detections))
        return result
