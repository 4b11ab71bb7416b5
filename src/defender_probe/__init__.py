"""
defender-probe: remote Windows security-software status probe.

Connects to one host over WMI (DCOM or WS-Management), reads antimalware
engine state, SecurityCenter2 product registrations and the domain firewall
policy, and returns one normalized ResultRecord.
"""

from ._types import FieldState, ProductType, Transport
from .collector import StatusCollector
from .config import ProbeSettings, load_settings
from .exceptions import (
    AuthenticationFailed,
    ProbeConnectionError,
    ProbeError,
    QueryError,
    TransportUnsupported,
    UnreachableHost,
)
from .models import Credentials, FieldResult, ProbeReport, ResultRecord
from .probe import probe_host, probe_host_quietly, probe_host_report
from .session import SessionManager

__version__ = "0.1.0"

__all__ = [
    'AuthenticationFailed',
    'Credentials',
    'FieldResult',
    'FieldState',
    'ProbeConnectionError',
    'ProbeError',
    'ProbeReport',
    'ProbeSettings',
    'ProductType',
    'QueryError',
    'ResultRecord',
    'SessionManager',
    'StatusCollector',
    'Transport',
    'TransportUnsupported',
    'UnreachableHost',
    'load_settings',
    'probe_host',
    'probe_host_quietly',
    'probe_host_report',
]
