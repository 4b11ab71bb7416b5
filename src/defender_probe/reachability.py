"""
Reachability check: one ICMP echo through the system ping binary.
"""

import asyncio
import logging
import subprocess
from typing import List, Optional

from .config import ProbeSettings

logger = logging.getLogger(__name__)


def build_ping_command(host: str, settings: ProbeSettings) -> List[str]:
    seconds = max(1, int(settings.ping_timeout))
    substitutions = {
        "{host}": host,
        "{timeout}": str(seconds),
        "{timeout_ms}": str(int(settings.ping_timeout * 1000)),
    }
    command = []
    for part in settings.ping_command:
        for placeholder, value in substitutions.items():
            part = part.replace(placeholder, value)
        command.append(part)
    return command


def ping(host: str, settings: Optional[ProbeSettings] = None) -> bool:
    """
    Send one echo request.

    Returns:
        True if the host answered, False otherwise (including a missing
        ping binary or a hung command)
    """
    settings = settings or ProbeSettings()
    cmd = build_ping_command(host, settings)
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=settings.ping_timeout + 1.0,
            check=False,
        )
    except FileNotFoundError:
        logger.warning(f"Reachability check unavailable: {cmd[0]} not found")
        return False
    except subprocess.TimeoutExpired:
        logger.debug(f"Ping to {host} timed out")
        return False

    if result.returncode != 0:
        logger.debug(f"Ping to {host} failed (rc={result.returncode})")
    return result.returncode == 0


async def ping_async(host: str, settings: Optional[ProbeSettings] = None) -> bool:
    """ping() in the default thread pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, ping, host, settings)
