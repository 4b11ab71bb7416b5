"""
Data models for defender-probe.

ResultRecord is the normalized output of one probe invocation. Every optional
field defaults to None ("unknown"), never False, so a missing answer stays
distinguishable from a confirmed negative.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from ._types import FieldState, now_utc


# ============================================================================
# Credentials
# ============================================================================


class Credentials(BaseModel):
    """Privileged account used to open a session."""

    username: str = Field(..., min_length=1)
    password: SecretStr = Field(default=SecretStr(""))
    domain: str = Field(default="")
    nt_hash: Optional[SecretStr] = Field(
        default=None,
        description="NTLM hash, DCOM only (LM:NT or NT)"
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_principal(cls, principal: str, password: str = "", **kwargs) -> "Credentials":
        """
        Build credentials from DOMAIN\\user or user@domain.

        A bare user name leaves the domain empty (local account).
        """
        principal = principal.strip()
        domain = ""
        username = principal
        if "\\" in principal:
            domain, username = principal.split("\\", 1)
        elif "@" in principal:
            username, domain = principal.split("@", 1)
        return cls(username=username, password=SecretStr(password), domain=domain, **kwargs)

    @property
    def principal(self) -> str:
        """User name in the DOMAIN\\user form WinRM expects."""
        return f"{self.domain}\\{self.username}" if self.domain else self.username


# ============================================================================
# Result Record
# ============================================================================


class ResultRecord(BaseModel):
    """Aggregated security-software status for one host."""

    host: str = Field(..., min_length=1, description="Probed target, exactly as requested")

    antivirus_enabled: Optional[bool] = None
    antivirus_signature_last_updated: Optional[datetime] = None
    antimalware_service_enabled: Optional[bool] = None
    on_access_protection_enabled: Optional[bool] = None
    real_time_protection_enabled: Optional[bool] = None
    antispyware_enabled: Optional[bool] = None
    behavior_monitor_enabled: Optional[bool] = None
    office_protection_enabled: Optional[bool] = None
    network_inspection_enabled: Optional[bool] = None

    # Workstation-class targets only (SecurityCenter2)
    antispyware_product_name: Optional[str] = None
    antivirus_product_name: Optional[str] = None
    firewall_product_name: Optional[str] = None

    firewall_domain_profile_enabled: Optional[int] = Field(
        default=None,
        description="Raw EnableFirewall policy DWORD"
    )

    model_config = ConfigDict(
        frozen=True,
        extra='forbid',
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator('antivirus_product_name', 'antispyware_product_name', 'firewall_product_name')
    @classmethod
    def blank_name_is_unknown(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with the external camelCase field names."""
        return self.model_dump(mode="json", by_alias=True)


ANTIMALWARE_FIELDS = (
    "antivirus_enabled",
    "antivirus_signature_last_updated",
    "antimalware_service_enabled",
    "on_access_protection_enabled",
    "real_time_protection_enabled",
    "antispyware_enabled",
    "behavior_monitor_enabled",
    "office_protection_enabled",
    "network_inspection_enabled",
)

PRODUCT_FIELDS = (
    "antispyware_product_name",
    "antivirus_product_name",
    "firewall_product_name",
)

FIREWALL_POLICY_FIELD = "firewall_domain_profile_enabled"

RECORD_FIELDS = ANTIMALWARE_FIELDS + PRODUCT_FIELDS + (FIREWALL_POLICY_FIELD,)


# ============================================================================
# Per-field outcomes
# ============================================================================


@dataclass
class FieldResult:
    """Outcome of one record field, richer than the bare value."""

    state: FieldState = FieldState.NOT_QUERIED
    value: Any = None
    detail: Optional[str] = None

    @classmethod
    def observed(cls, value: Any) -> "FieldResult":
        return cls(FieldState.OBSERVED, value)

    @classmethod
    def not_applicable(cls, detail: Optional[str] = None, value: Any = None) -> "FieldResult":
        return cls(FieldState.NOT_APPLICABLE, value, detail)

    @classmethod
    def failed(cls, detail: Optional[str] = None) -> "FieldResult":
        return cls(FieldState.QUERY_FAILED, None, detail)

    @property
    def known(self) -> bool:
        return self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.isoformat() if isinstance(self.value, datetime) else self.value
        return {"state": self.state.value, "value": value, "detail": self.detail}


@dataclass
class ProbeReport:
    """ResultRecord plus the per-field outcomes that produced it."""

    record: ResultRecord
    fields: Dict[str, FieldResult] = field(default_factory=dict)
    transport: Optional[str] = None
    started_at: datetime = field(default_factory=now_utc)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for CLI/diagnostic output."""
        return {
            "record": self.record.to_dict(),
            "fields": {to_camel(name): result.to_dict() for name, result in self.fields.items()},
            "transport": self.transport,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
        }
