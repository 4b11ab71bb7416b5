"""
Session management.

Opens and closes one authenticated session per probe invocation. Sessions
are never cached or shared; every open() builds a fresh transport client.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from ._types import Transport
from .config import ProbeSettings
from .exceptions import ProbeConnectionError, ProbeError, TransportUnsupported, UnreachableHost
from .models import Credentials
from .reachability import ping_async
from .transports import TRANSPORTS, QueryTransport, Session, when_settled

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ProbeSettings], QueryTransport]
Pinger = Callable[[str, ProbeSettings], Awaitable[bool]]


class SessionManager:
    """
    Open and close sessions to remote hosts.

    Args:
        settings: Probe settings (timeouts, WinRM options)
        transports: Transport kind -> factory; defaults to DCOM + WS-Management
        pinger: Async reachability checker; defaults to one ICMP echo
    """

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        transports: Optional[Dict[Transport, TransportFactory]] = None,
        pinger: Optional[Pinger] = None,
    ):
        self.settings = settings or ProbeSettings()
        self.transports: Dict[Transport, TransportFactory] = dict(transports or TRANSPORTS)
        self.pinger = pinger or ping_async

    def resolve_transport(self, host: str, transport) -> Transport:
        if transport is None:
            transport = self.settings.default_transport
        try:
            kind = Transport.parse(transport)
        except ValueError:
            raise TransportUnsupported(host, f"unknown transport {transport!r}")
        if kind not in self.transports:
            raise TransportUnsupported(host, f"transport {kind.value} is not available")
        return kind

    async def open(
        self,
        host: str,
        credentials: Optional[Credentials] = None,
        transport=None,
        check_reachability: bool = False,
    ) -> Session:
        """
        Open an authenticated session.

        Raises:
            ValueError: Empty host
            UnreachableHost: check_reachability set and no echo reply
            AuthenticationFailed: Credentials rejected
            TransportUnsupported: Unknown transport or missing client library
            ProbeConnectionError: Any other transport failure, including timeout
        """
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")

        kind = self.resolve_transport(host, transport)

        if check_reachability:
            if not await self.pinger(host, self.settings):
                logger.info(f"{host} did not answer reachability check")
                raise UnreachableHost(host, "no echo reply")

        client = self.transports[kind](self.settings)
        timeout = self.settings.connect_timeout
        loop = asyncio.get_running_loop()

        logger.info(f"Opening {kind.value} session to {host} "
                    f"({'explicit credentials' if credentials else 'ambient identity'})")

        future = loop.run_in_executor(None, client.connect, host, credentials)
        try:
            handle = await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{kind.value} connect to {host} timed out after {timeout}s")
            when_settled(future, lambda fut: self._discard_late_connect(client, host, fut), f"connect to {host}")
            raise ProbeConnectionError(host, f"{kind.value} connect timed out after {timeout}s")
        except ProbeError as e:
            logger.warning(f"Session open to {host} failed: {e.kind}: {e.diagnostic}")
            raise
        except Exception as e:
            logger.warning(f"Session open to {host} failed: {e}")
            raise ProbeConnectionError(host, f"{type(e).__name__}: {e}") from e

        return Session(host=host, transport=client, handle=handle)

    @staticmethod
    def _discard_late_connect(client: QueryTransport, host: str, future: asyncio.Future) -> None:
        """Disconnect a handle whose connect finished after open gave up on it."""
        if future.cancelled() or future.exception() is not None:
            return
        logger.info(f"Late connect to {host} completed; disconnecting")
        client.disconnect(future.result())

    async def close(self, session: Session) -> None:
        """
        Release a session. Safe to call more than once; never raises.

        A query still running after its timeout is awaited (bounded by the
        query timeout) before disconnecting. If it outlasts that too, the
        disconnect runs when it returns.
        """
        if session.closed:
            return
        session.closed = True

        pending = session.pending
        if pending is not None and not pending.done():
            bound = session.transport.settings.query_timeout
            try:
                await asyncio.wait_for(asyncio.shield(pending), timeout=bound)
            except asyncio.TimeoutError:
                logger.warning(f"Query on {session.host} still running after {bound}s; "
                               f"disconnect deferred until it returns")
                when_settled(
                    pending,
                    lambda fut: session.transport.disconnect(session.handle),
                    f"query on {session.host}",
                )
                return
            except Exception as e:
                # Already reported as a failed field when it timed out
                logger.debug(f"Timed-out query on {session.host} ended with: {e}")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, session.transport.disconnect, session.handle)
            logger.debug(f"Closed {session.kind.value} session to {session.host}")
        except Exception as e:
            logger.warning(f"Error closing session to {session.host}: {e}")

    @asynccontextmanager
    async def session(
        self,
        host: str,
        credentials: Optional[Credentials] = None,
        transport=None,
        check_reachability: bool = False,
    ) -> AsyncIterator[Session]:
        """Scoped session: closed on every exit path once opened."""
        opened = await self.open(host, credentials, transport, check_reachability)
        try:
            yield opened
        finally:
            await self.close(opened)
