"""Health check response model."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class HealthResponse:
    """Health check response for the HTTP bridge.

    Attributes:
        status: Health status ("healthy" or "unhealthy").
        version: Server version string.
        uptime_seconds: Seconds since server start.
        timestamp: Current server time.
        database: Active database name.
    """

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    database: str | None = None

    def to_dict(self) -> dict[str, str | float | None]:
        """Convert to JSON-serializable dictionary."""
        return {
            "status": self.status,
            "version": self.version,
            "uptime_seconds": self.uptime_seconds,
            "timestamp": self.timestamp.isoformat(),
            "database": self.database,
        }
