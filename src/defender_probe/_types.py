"""
Shared types for defender-probe.

Import enums from this module, not from individual files.

Usage:
    from defender_probe._types import Transport, ProductType, FieldState, now_utc
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def now_utc() -> datetime:
    """
    Get current UTC time with timezone info.

    Use this instead of datetime.utcnow() which is deprecated.
    """
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class Transport(str, Enum):
    """
    Remote management transports.

    - DCOM: legacy RPC-style WMI (port 135 + dynamic RPC). Works against
      older targets with no WinRM listener, so it is the default.
    - WSMAN: CIM over WS-Management (WinRM, 5985/5986).
    """
    DCOM = "dcom"
    WSMAN = "wsman"

    @classmethod
    def parse(cls, value) -> "Transport":
        """Accept an enum member or its string value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class ProductType(int, Enum):
    """Win32_OperatingSystem.ProductType values."""
    WORKSTATION = 1
    DOMAIN_CONTROLLER = 2
    SERVER = 3

    @classmethod
    def from_raw(cls, value) -> Optional["ProductType"]:
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return None


class FieldState(str, Enum):
    """Why a record field holds what it holds."""
    OBSERVED = "observed"  # value came from a successful query (may be None for empty results)
    NOT_APPLICABLE = "not_applicable"  # feature absent or query skipped by OS class
    QUERY_FAILED = "query_failed"
    NOT_QUERIED = "not_queried"
