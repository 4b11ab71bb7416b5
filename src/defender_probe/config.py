"""
Configuration management for defender-probe.

Loads settings from DEFENDER_PROBE_* environment variables.
Validates all settings and provides typed access.
"""

import sys
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._types import Transport


def default_ping_command(platform: str) -> List[str]:
    """One echo request with the local ping binary's flags."""
    if platform.startswith("win"):
        return ["ping", "-n", "1", "-w", "{timeout_ms}", "{host}"]
    return ["ping", "-c", "1", "-W", "{timeout}", "{host}"]


class ProbeSettings(BaseSettings):
    """Probe configuration loaded from environment."""

    # ========================================================================
    # Transport
    # ========================================================================

    default_transport: Transport = Field(
        default=Transport.DCOM,
        description="Transport used when the caller does not pick one"
    )

    # ========================================================================
    # Timing
    # ========================================================================

    connect_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Seconds allowed for session establishment"
    )

    query_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Seconds allowed for each individual query"
    )

    ping_timeout: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="Seconds to wait for the echo reply"
    )

    ping_command: List[str] = Field(
        default_factory=lambda: default_ping_command(sys.platform),
        description="Reachability command; {host}, {timeout} (seconds) and {timeout_ms} are substituted"
    )

    # ========================================================================
    # WS-Management
    # ========================================================================

    wsman_port: int = Field(
        default=5985,
        ge=1,
        le=65535,
        description="WinRM port (5986 for HTTPS)"
    )

    wsman_use_ssl: bool = Field(
        default=False,
        description="Use HTTPS for WinRM"
    )

    wsman_verify_ssl: bool = Field(
        default=True,
        description="Validate the WinRM server certificate"
    )

    wsman_auth: str = Field(
        default="ntlm",
        description="pywinrm transport used with explicit credentials"
    )

    # ========================================================================
    # Logging
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Probe log level"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator('default_transport', mode='before')
    @classmethod
    def validate_default_transport(cls, v):
        return Transport.parse(v)

    @field_validator('wsman_auth')
    @classmethod
    def validate_wsman_auth(cls, v):
        if v not in ['ntlm', 'kerberos', 'credssp', 'basic', 'certificate']:
            raise ValueError('wsman_auth must be ntlm, kerberos, credssp, basic, or certificate')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ['DEBUG', 'INFO', 'WARNING', 'ERROR']:
            raise ValueError('log_level must be DEBUG, INFO, WARNING, or ERROR')
        return v

    @field_validator('ping_command')
    @classmethod
    def validate_ping_command(cls, v):
        if not v or not any('{host}' in part for part in v):
            raise ValueError('ping_command must contain a {host} placeholder')
        return v

    @property
    def wsman_scheme(self) -> str:
        return "https" if self.wsman_use_ssl else "http"

    model_config = SettingsConfigDict(
        env_prefix='DEFENDER_PROBE_',
        validate_assignment=True,
        extra='forbid'
    )


def load_settings() -> ProbeSettings:
    """
    Load configuration from environment variables.

    Returns:
        ProbeSettings: Validated configuration

    Raises:
        pydantic.ValidationError: If a setting is invalid
    """
    return ProbeSettings()
