"""
WMI over DCOM (legacy RPC-style transport).

Uses impacket's IWbemLevel1Login/IWbemServices, the same path enum_avproducts
style tooling takes: one DCOM connection, one IWbemServices per namespace,
WQL ExecQuery for classes and IWbemClassObject method calls for StdRegProv.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .._types import Transport
from ..exceptions import AuthenticationFailed, ProbeConnectionError, QueryError, TransportUnsupported
from ..models import Credentials
from ..queries import NS_CIMV2, QuerySpec
from .base import QueryTransport, Row, check_method_result

logger = logging.getLogger(__name__)

# Status codes / markers that mean "credentials rejected"
AUTH_FAILURE_CODES = frozenset({
    0x00000005,  # rpc_s_access_denied / ERROR_ACCESS_DENIED
    0xC000006D,  # STATUS_LOGON_FAILURE
    0xC000006E,  # STATUS_ACCOUNT_RESTRICTION
    0xC0000234,  # STATUS_ACCOUNT_LOCKED_OUT
})
AUTH_FAILURE_MARKERS = ("rpc_s_access_denied", "STATUS_LOGON_FAILURE", "KDC_ERR", "access_denied")

ENUM_INFINITE = 0xFFFFFFFF


def wmi_namespace_path(namespace: str) -> str:
    """root\\cimv2 -> //./root/cimv2"""
    return "//./" + namespace.replace("\\", "/").lstrip("/")


def error_code(exc: Exception) -> Optional[int]:
    """Status carried by impacket's DCERPCException (and subclasses)."""
    return getattr(exc, "error_code", None)


def is_auth_failure(exc: Exception) -> bool:
    code = error_code(exc)
    if code is not None and (int(code) & 0xFFFFFFFF) in AUTH_FAILURE_CODES:
        return True
    text = str(exc)
    return any(marker in text for marker in AUTH_FAILURE_MARKERS)


def split_hashes(nt_hash: str):
    """Accept LM:NT or bare NT."""
    if ":" in nt_hash:
        lmhash, nthash = nt_hash.split(":", 1)
        return lmhash, nthash
    return "", nt_hash


@dataclass
class DcomHandle:
    """Live DCOM connection plus the IWbemServices opened on it."""
    dcom: Any
    login: Any = None
    services: Dict[str, Any] = field(default_factory=dict)


class DcomTransport(QueryTransport):
    """
    Legacy RPC-style transport using impacket.

    Without credentials Kerberos is used with the ticket cache named by
    KRB5CCNAME.
    """

    kind = Transport.DCOM

    def _impacket(self, host: str):
        try:
            from impacket.dcerpc.v5.dcom import wmi
            from impacket.dcerpc.v5.dcomrt import DCOMConnection
            from impacket.dcerpc.v5.dtypes import NULL
        except ImportError as e:
            raise TransportUnsupported(
                host, f"impacket is required for DCOM ({e}). Install with: pip install impacket"
            ) from e
        return DCOMConnection, wmi, NULL

    def connect(self, host: str, credentials: Optional[Credentials]) -> DcomHandle:
        DCOMConnection, _, _ = self._impacket(host)

        username = password = domain = lmhash = nthash = ""
        if credentials is not None:
            username = credentials.username
            password = credentials.password.get_secret_value()
            domain = credentials.domain
            if credentials.nt_hash is not None:
                lmhash, nthash = split_hashes(credentials.nt_hash.get_secret_value())

        logger.debug(f"Opening DCOM connection to {host} (kerberos={credentials is None})")

        try:
            dcom = DCOMConnection(
                host,
                username,
                password,
                domain,
                lmhash,
                nthash,
                oxidResolver=True,
                doKerberos=credentials is None,
            )
        except Exception as e:
            raise self._classify(host, e) from e

        handle = DcomHandle(dcom=dcom)
        try:
            # NTLMLogin is where credentials are actually checked
            self._services(handle, NS_CIMV2)
        except Exception as e:
            try:
                self.disconnect(handle)
            except Exception:
                logger.debug(f"Cleanup after failed DCOM login to {host} also failed", exc_info=True)
            raise self._classify(host, e) from e

        return handle

    def _classify(self, host: str, exc: Exception) -> ProbeConnectionError:
        if is_auth_failure(exc):
            return AuthenticationFailed(host, str(exc))
        return ProbeConnectionError(host, f"{type(exc).__name__}: {exc}")

    def _services(self, handle: DcomHandle, namespace: str):
        """IWbemServices for namespace, logged in once per session."""
        if namespace in handle.services:
            return handle.services[namespace]

        _, wmi, NULL = self._impacket("")
        if handle.login is None:
            interface = handle.dcom.CoCreateInstanceEx(wmi.CLSID_WbemLevel1Login, wmi.IID_IWbemLevel1Login)
            handle.login = wmi.IWbemLevel1Login(interface)

        services = handle.login.NTLMLogin(wmi_namespace_path(namespace), NULL, NULL)
        handle.services[namespace] = services
        return services

    def query(self, handle: DcomHandle, spec: QuerySpec) -> List[Row]:
        try:
            services = self._services(handle, spec.namespace)
            if spec.is_method:
                return [check_method_result(spec, self._call_method(services, spec))]
            return self._exec_query(services, spec)
        except QueryError:
            raise
        except Exception as e:
            raise QueryError(str(e), code=error_code(e), query=spec.describe()) from e

    def _exec_query(self, services, spec: QuerySpec) -> List[Row]:
        enum = services.ExecQuery(spec.wql)
        rows: List[Row] = []
        try:
            while True:
                try:
                    obj = enum.Next(ENUM_INFINITE, 1)[0]
                except Exception as e:
                    # Enumeration ends with S_FALSE
                    if "S_FALSE" in str(e):
                        break
                    raise
                properties = obj.getProperties()
                rows.append({name: prop.get("value") for name, prop in properties.items()})
        finally:
            enum.RemRelease()
        return rows

    def _call_method(self, services, spec: QuerySpec) -> Row:
        wmi_class, _ = services.GetObject(spec.class_name)
        out = getattr(wmi_class, spec.method)(*spec.arguments.values())
        return {name: getattr(out, name, None) for name in spec.outputs}

    def disconnect(self, handle: DcomHandle) -> None:
        try:
            for services in handle.services.values():
                services.RemRelease()
            if handle.login is not None:
                handle.login.RemRelease()
        finally:
            handle.services.clear()
            handle.login = None
            handle.dcom.disconnect()
