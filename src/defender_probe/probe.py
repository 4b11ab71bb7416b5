"""
Probe entry points.

One invocation = open session -> collect -> close session (always).
Fan-out across hosts is the caller's job: call probe_host once per host,
e.g. under asyncio.gather with a semaphore; each call owns its own session.
"""

import logging
import socket
from typing import Optional

from ._types import Transport
from .collector import StatusCollector
from .config import ProbeSettings
from .exceptions import ProbeError
from .models import Credentials, ProbeReport, ResultRecord
from .session import SessionManager

logger = logging.getLogger(__name__)


async def probe_host_report(
    host: Optional[str] = None,
    credentials: Optional[Credentials] = None,
    check_reachability: bool = False,
    transport: Optional[Transport] = None,
    settings: Optional[ProbeSettings] = None,
    manager: Optional[SessionManager] = None,
    collector: Optional[StatusCollector] = None,
) -> ProbeReport:
    """
    Probe one host and return the record with per-field outcomes.

    Args:
        host: Target; defaults to the local machine name
        credentials: Privileged account; None uses the caller's identity
        check_reachability: Ping before connecting
        transport: Transport.DCOM (default) or Transport.WSMAN
        settings: Probe settings; loaded from environment if omitted

    Raises:
        UnreachableHost, AuthenticationFailed, TransportUnsupported,
        ProbeConnectionError: Fatal, no record is produced
    """
    host = host if host is not None else socket.gethostname()
    manager = manager or SessionManager(settings)
    collector = collector or StatusCollector()

    async with manager.session(host, credentials, transport, check_reachability) as session:
        return await collector.collect_report(session)


async def probe_host(
    host: Optional[str] = None,
    credentials: Optional[Credentials] = None,
    check_reachability: bool = False,
    transport: Optional[Transport] = None,
    settings: Optional[ProbeSettings] = None,
    manager: Optional[SessionManager] = None,
    collector: Optional[StatusCollector] = None,
) -> ResultRecord:
    """Probe one host and return its ResultRecord. Raises like probe_host_report."""
    report = await probe_host_report(
        host, credentials, check_reachability, transport, settings, manager, collector,
    )
    return report.record


async def probe_host_quietly(
    host: Optional[str] = None,
    credentials: Optional[Credentials] = None,
    check_reachability: bool = False,
    transport: Optional[Transport] = None,
    settings: Optional[ProbeSettings] = None,
    manager: Optional[SessionManager] = None,
    collector: Optional[StatusCollector] = None,
) -> Optional[ResultRecord]:
    """
    Like probe_host, but a fatal error yields None instead of raising.

    The error is logged; callers must treat None ("no record") as distinct
    from a record whose fields are all unknown.
    """
    try:
        return await probe_host(
            host, credentials, check_reachability, transport, settings, manager, collector,
        )
    except ProbeError as e:
        logger.warning(f"No record for {e.host}: {e.kind}: {e.diagnostic}")
        return None
