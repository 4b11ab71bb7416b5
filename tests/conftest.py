"""
Shared fixtures: a scripted in-memory transport standing in for DCOM/WinRM.
"""

import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from defender_probe._types import Transport
from defender_probe.config import ProbeSettings
from defender_probe.exceptions import QueryError
from defender_probe.queries import (
    ANTIMALWARE_STATUS,
    ANTISPYWARE_PRODUCT,
    ANTIVIRUS_PRODUCT,
    FIREWALL_DOMAIN_POLICY,
    FIREWALL_PRODUCT,
    OPERATING_SYSTEM,
    QuerySpec,
)
from defender_probe.session import SessionManager
from defender_probe.transports import QueryTransport, Session, check_method_result


class FakeTransport(QueryTransport):
    """
    Answers each QuerySpec from a canned table.

    A table value is either a list of rows or an exception instance to raise.
    Specs missing from the table fail with a code-less QueryError. Specs in
    `delays` sleep that many seconds first, like a slow remote provider.
    """

    kind = Transport.DCOM

    def __init__(
        self,
        responses: Optional[Dict[QuerySpec, Any]] = None,
        settings: Optional[ProbeSettings] = None,
        connect_error: Optional[Exception] = None,
        disconnect_error: Optional[Exception] = None,
        delays: Optional[Dict[QuerySpec, float]] = None,
        connect_delay: float = 0.0,
    ):
        super().__init__(settings)
        self.responses = dict(responses or {})
        self.connect_error = connect_error
        self.disconnect_error = disconnect_error
        self.delays = dict(delays or {})
        self.connect_delay = connect_delay
        self.connects: List[str] = []
        self.queries: List[QuerySpec] = []
        self.disconnects = 0
        self.disconnected_handles: List[Any] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.disconnected_mid_query = False
        self._lock = threading.Lock()

    def connect(self, host, credentials):
        self.connects.append(host)
        if self.connect_delay:
            time.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        return {"host": host}

    def query(self, handle, spec):
        with self._lock:
            self.queries.append(spec)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if spec in self.delays:
                time.sleep(self.delays[spec])
            return self._answer(spec)
        finally:
            with self._lock:
                self.in_flight -= 1

    def _answer(self, spec):
        response = self.responses.get(spec)
        if response is None:
            raise QueryError("no canned response", query=spec.describe())
        if isinstance(response, Exception):
            raise response
        if spec.is_method:
            return [check_method_result(spec, response[0])]
        return response

    def disconnect(self, handle):
        with self._lock:
            self.disconnects += 1
            self.disconnected_handles.append(handle)
            if self.in_flight:
                self.disconnected_mid_query = True
        if self.disconnect_error is not None:
            raise self.disconnect_error


MP_STATUS_ROW = {
    "AMServiceEnabled": True,
    "AntispywareEnabled": True,
    "AntivirusEnabled": True,
    "AntivirusSignatureLastUpdated": "20260115083000.000000+000",
    "BehaviorMonitorEnabled": False,
    "IoavProtectionEnabled": True,
    "NISEnabled": True,
    "OnAccessProtectionEnabled": True,
    "RealTimeProtectionEnabled": False,
}


def workstation_responses() -> Dict[QuerySpec, Any]:
    """Every query succeeds on a Windows workstation with Acme AV registered."""
    return {
        ANTIMALWARE_STATUS: [dict(MP_STATUS_ROW)],
        OPERATING_SYSTEM: [{"ProductType": 1}],
        ANTISPYWARE_PRODUCT: [{"displayName": "Windows Defender"}],
        ANTIVIRUS_PRODUCT: [{"displayName": "Acme AV"}],
        FIREWALL_PRODUCT: [],
        FIREWALL_DOMAIN_POLICY: [{"ReturnValue": 0, "uValue": 1}],
    }


@pytest.fixture
def settings():
    """Settings with short timeouts, independent of the environment."""
    return ProbeSettings(connect_timeout=5, query_timeout=5, ping_timeout=1)


@pytest.fixture
def make_transport(settings):
    def factory(responses=None, **kwargs) -> FakeTransport:
        return FakeTransport(responses, settings=settings, **kwargs)
    return factory


@pytest.fixture
def make_session(make_transport):
    def factory(responses=None, host="WS001", **kwargs) -> Session:
        transport = make_transport(responses, **kwargs)
        return Session(host=host, transport=transport, handle={"host": host})
    return factory


@pytest.fixture
def make_manager(settings):
    """SessionManager wired to one FakeTransport instance for both kinds."""
    def factory(transport: FakeTransport, reachable: bool = True):
        pings: List[str] = []

        async def pinger(host, _settings):
            pings.append(host)
            return reachable

        manager = SessionManager(
            settings=settings,
            transports={
                Transport.DCOM: lambda _settings: transport,
                Transport.WSMAN: lambda _settings: transport,
            },
            pinger=pinger,
        )
        manager.pings = pings
        return manager
    return factory
