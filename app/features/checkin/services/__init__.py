"""
Check-in services.
"""

from app.features.checkin.services.checkin_service import (
    CheckinService,
    InvalidCheckinTokenError,
    SweepOutcome,
    checkin_service,
)

__all__ = ["CheckinService", "InvalidCheckinTokenError", "SweepOutcome", "checkin_service"]
