"""
Transport abstraction.

A QueryTransport knows how to open a connection to one host, run a QuerySpec
against it and tear it down. All three operations are blocking; Session wraps
query execution for async callers the same way the WinRM executor does
(thread pool + asyncio.wait_for).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .._types import Transport, now_utc
from ..config import ProbeSettings
from ..exceptions import QueryError
from ..models import Credentials
from ..queries import QuerySpec

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class QueryTransport(ABC):
    """Blocking client for one remote-management protocol."""

    kind: Transport

    def __init__(self, settings: Optional[ProbeSettings] = None):
        self.settings = settings or ProbeSettings()

    @abstractmethod
    def connect(self, host: str, credentials: Optional[Credentials]) -> Any:
        """
        Open an authenticated connection.

        Returns:
            Transport-specific handle

        Raises:
            AuthenticationFailed: Credentials rejected
            ProbeConnectionError: Any other transport failure
        """

    @abstractmethod
    def query(self, handle: Any, spec: QuerySpec) -> List[Row]:
        """
        Run one query.

        Class specs return one row per instance. Method specs return a single
        row of out-parameters.

        Raises:
            QueryError: With the remote status code when one is available
        """

    @abstractmethod
    def disconnect(self, handle: Any) -> None:
        """Release the connection. May raise; SessionManager logs and drops it."""


def check_method_result(spec: QuerySpec, row: Row) -> Row:
    """Raise QueryError for a non-zero method ReturnValue."""
    code = row.get("ReturnValue")
    if code not in (None, 0):
        raise QueryError(
            f"{spec.describe()} returned {code}",
            code=code,
            query=spec.describe(),
        )
    return row


def when_settled(future: asyncio.Future, callback: Callable[[asyncio.Future], None], what: str) -> None:
    """
    Run callback(future) once an abandoned executor call finishes.

    The callback runs on the event loop thread. Its errors are logged at
    warning level and dropped.
    """
    def _done(fut: asyncio.Future) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            logger.debug(f"Abandoned {what} finished with error: {fut.exception()}")
        try:
            callback(fut)
        except Exception as e:
            logger.warning(f"Cleanup after abandoned {what} failed: {e}")

    future.add_done_callback(_done)


@dataclass
class Session:
    """
    One authenticated connection, owned by a single probe invocation.

    A query that outlives its timeout keeps running in its worker thread.
    It is kept in `pending` and the session is broken from then on: no
    further query is started on the handle, and SessionManager.close waits
    for it before disconnecting.
    """

    host: str
    transport: QueryTransport
    handle: Any = None
    opened_at: datetime = field(default_factory=now_utc)
    closed: bool = False
    pending: Optional[asyncio.Future] = None

    @property
    def kind(self) -> Transport:
        return self.transport.kind

    @property
    def broken(self) -> bool:
        return self.pending is not None

    async def query(self, spec: QuerySpec) -> List[Row]:
        """
        Run one query, bounded by the configured query timeout.

        Raises:
            QueryError: On any failure, including timeouts and queries on a
                closed or broken session
        """
        if self.closed:
            raise QueryError("session is closed", query=spec.describe())
        if self.broken:
            raise QueryError("session unusable after a timed-out query", query=spec.describe())

        timeout = self.transport.settings.query_timeout
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.transport.query, self.handle, spec)
        try:
            # shield: on timeout the worker keeps running and must stay awaitable
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            if not future.done():
                logger.warning(f"{spec.describe()} on {self.host} timed out after {timeout}s; "
                               f"no further queries on this session")
                self.pending = future
                when_settled(future, lambda fut: None, f"query {spec.describe()} on {self.host}")
            raise QueryError(f"timed out after {timeout}s", query=spec.describe())
        except QueryError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure running {spec.describe()} on {self.host}")
            raise QueryError(str(e) or type(e).__name__, query=spec.describe()) from e
