"""
ResultRecord shaping.

Pure conversions from native WMI/CIM values to the record's types. The same
property can arrive as a Python bool (DCOM), a JSON bool or "True" string
(WS-Management), an ISO-8601 string or a DMTF datetime string.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

# Native MSFT_MpComputerStatus property -> record field
ANTIMALWARE_FIELD_MAP = {
    "AntivirusEnabled": "antivirus_enabled",
    "AMServiceEnabled": "antimalware_service_enabled",
    "OnAccessProtectionEnabled": "on_access_protection_enabled",
    "RealTimeProtectionEnabled": "real_time_protection_enabled",
    "AntispywareEnabled": "antispyware_enabled",
    "BehaviorMonitorEnabled": "behavior_monitor_enabled",
    "IoavProtectionEnabled": "office_protection_enabled",
    "NISEnabled": "network_inspection_enabled",
}

SIGNATURE_TIMESTAMP_FIELD = ("AntivirusSignatureLastUpdated", "antivirus_signature_last_updated")

_DMTF = re.compile(
    r"^(?P<ts>\d{14})\.(?P<frac>\d{6})(?P<sign>[+-])(?P<offset>\d{3})$"
)

_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def coerce_tristate(value: Any) -> Optional[bool]:
    """Map a native flag to True/False, anything unrecognized to None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    return None


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Parse datetime, ISO-8601 or DMTF (yyyymmddHHMMSS.ffffff+UUU)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc) if value.tzinfo else value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    match = _DMTF.match(text)
    if match:
        try:
            naive = datetime.strptime(match["ts"] + match["frac"], "%Y%m%d%H%M%S%f")
        except ValueError:
            return None
        minutes = int(match["offset"]) * (-1 if match["sign"] == "-" else 1)
        return naive.replace(tzinfo=timezone(timedelta(minutes=minutes))).astimezone(timezone.utc)

    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        return None
    return parsed.astimezone(timezone.utc) if parsed.tzinfo else parsed


def coerce_dword(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value) & 0xFFFFFFFF
    except (TypeError, ValueError):
        return None


def shape_antimalware(row: Dict[str, Any]) -> Dict[str, Any]:
    """MSFT_MpComputerStatus row -> record field values."""
    shaped = {field: coerce_tristate(row.get(native)) for native, field in ANTIMALWARE_FIELD_MAP.items()}
    native, field = SIGNATURE_TIMESTAMP_FIELD
    shaped[field] = coerce_timestamp(row.get(native))
    return shaped


def product_display_name(rows: Iterable[Dict[str, Any]]) -> Optional[str]:
    """
    Distinct SecurityCenter2 displayName values, joined in catalog order.

    Returns None when nothing is registered.
    """
    names: List[str] = []
    for row in rows:
        name = row.get("displayName")
        if isinstance(name, str):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return ", ".join(names) if names else None
