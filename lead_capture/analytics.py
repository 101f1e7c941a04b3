"""Conversion tracking sinks injected into the form controllers."""

import logging
from typing import Any, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)


class AnalyticsSink(Protocol):
    def track_event(self, name: str, params: Mapping[str, Any]) -> None:
        ...

    def track_conversion(self, target: Optional[str], params: Mapping[str, Any]) -> None:
        ...


class LoggingAnalytics:
    """Default sink for the form controllers: events go to the application log."""

    def track_event(self, name: str, params: Mapping[str, Any]) -> None:
        logger.info("Analytics event", extra={"event": name, "params": dict(params)})

    def track_conversion(self, target: Optional[str], params: Mapping[str, Any]) -> None:
        logger.info("Conversion tracked", extra={"conversion_target": target, "params": dict(params)})
