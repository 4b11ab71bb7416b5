"""
Probe error taxonomy.

Two tiers:
- Fatal (abort the invocation, no record is produced):
  UnreachableHost, ProbeConnectionError and its subclasses.
- Recoverable (the affected fields become unknown, the probe continues):
  QueryError.
"""

from typing import Any, Dict, Optional


class ProbeError(Exception):
    """Base class for all probe errors."""

    def __init__(self, host: str, diagnostic: str = ""):
        self.host = host
        self.diagnostic = diagnostic
        super().__init__(f"{host}: {diagnostic}" if diagnostic else host)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logs and CLI output."""
        return {
            "error": self.kind,
            "host": self.host,
            "diagnostic": self.diagnostic,
        }


class UnreachableHost(ProbeError):
    """Host did not answer the reachability probe."""


class ProbeConnectionError(ProbeError):
    """Session could not be established (transport-level failure)."""


class AuthenticationFailed(ProbeConnectionError):
    """Target rejected the supplied (or ambient) credentials."""


class TransportUnsupported(ProbeConnectionError):
    """Requested transport is unknown or its client library is unusable."""


class QueryError(Exception):
    """
    A single query against an open session failed.

    Attributes:
        code: Unsigned 32-bit HRESULT / WBEM status / method ReturnValue,
              or None when the failure carried no code (timeouts, parse errors)
        query: Short description of the failed query
    """

    def __init__(self, message: str, code: Optional[int] = None, query: str = ""):
        self.code = normalize_code(code)
        self.query = query
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f"{self.message} (code=0x{self.code:08X})"
        return self.message


def normalize_code(code) -> Optional[int]:
    """Fold signed HRESULTs (as .NET reports them) into unsigned 32-bit."""
    if code is None:
        return None
    try:
        return int(code) & 0xFFFFFFFF
    except (TypeError, ValueError):
        return None
