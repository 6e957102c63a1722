"""
Telemetry sink - fire-and-forget event notifications.

Game logic calls `emit()`; nothing a sink does (or fails to do) can feed
back into session or lobby state.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class TelemetrySink(ABC):
    @abstractmethod
    def track(self, event: str, properties: Dict[str, Any]) -> None:
        """Record one event"""


class NullTelemetry(TelemetrySink):
    def track(self, event: str, properties: Dict[str, Any]) -> None:
        pass


class LoggingTelemetry(TelemetrySink):
    def track(self, event: str, properties: Dict[str, Any]) -> None:
        logger.info(f"Telemetry: {event} {properties}")


def emit(sink: Optional[TelemetrySink], event: str, **properties: Any) -> None:
    if sink is None:
        return
    try:
        sink.track(event, properties)
    except Exception as e:
        logger.error(f"Telemetry sink failed on {event}: {e}", exc_info=True)
