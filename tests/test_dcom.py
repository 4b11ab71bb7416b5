"""
Tests for the DCOM transport against mocked impacket objects.
"""

from unittest.mock import MagicMock, patch

import pytest

from defender_probe.exceptions import AuthenticationFailed, ProbeConnectionError, QueryError
from defender_probe.models import Credentials
from defender_probe.queries import ANTIVIRUS_PRODUCT, FIREWALL_DOMAIN_POLICY, NS_CIMV2, NS_SECURITY_CENTER
from defender_probe.transports.dcom import (
    DcomHandle,
    DcomTransport,
    is_auth_failure,
    split_hashes,
    wmi_namespace_path,
)


class RpcError(Exception):
    """Shaped like impacket's DCERPCException."""

    def __init__(self, message, error_code=None):
        super().__init__(message)
        self.error_code = error_code


def wmi_object(**values):
    obj = MagicMock()
    obj.getProperties.return_value = {name: {"value": value} for name, value in values.items()}
    return obj


def enumerator(*objects):
    enum = MagicMock()
    enum.Next.side_effect = [[obj] for obj in objects] + [RpcError("WBEMSTATUS.WBEM_S_FALSE")]
    return enum


@pytest.fixture
def transport(settings):
    return DcomTransport(settings)


@pytest.fixture
def impacket(transport):
    """Patch the lazy impacket import with mocks."""
    dcom_cls = MagicMock(name="DCOMConnection")
    wmi = MagicMock(name="wmi")
    with patch.object(transport, "_impacket", return_value=(dcom_cls, wmi, None)):
        yield dcom_cls, wmi


def test_namespace_path():
    assert wmi_namespace_path("root\\SecurityCenter2") == "//./root/SecurityCenter2"


@pytest.mark.parametrize("value,expected", [
    ("aad3b435b51404eeaad3b435b51404ee:8846f7eaee8fb117ad06bdd830b7586c",
     ("aad3b435b51404eeaad3b435b51404ee", "8846f7eaee8fb117ad06bdd830b7586c")),
    ("8846f7eaee8fb117ad06bdd830b7586c", ("", "8846f7eaee8fb117ad06bdd830b7586c")),
])
def test_split_hashes(value, expected):
    assert split_hashes(value) == expected


class TestAuthClassification:

    def test_access_denied_code(self):
        assert is_auth_failure(RpcError("DCOM SessionError", error_code=5))

    def test_logon_failure_signed(self):
        assert is_auth_failure(RpcError("SMB SessionError", error_code=-1073741715))

    def test_marker_in_message(self):
        assert is_auth_failure(Exception("rpc_s_access_denied"))

    def test_network_error_is_not_auth(self):
        assert not is_auth_failure(OSError("[Errno 111] Connection refused"))


class TestConnect:

    def test_explicit_credentials(self, transport, impacket):
        dcom_cls, wmi = impacket
        creds = Credentials.from_principal("CLINIC\\admin", "TestPassword123")

        handle = transport.connect("WS001", creds)

        args, kwargs = dcom_cls.call_args
        assert args == ("WS001", "admin", "TestPassword123", "CLINIC", "", "")
        assert kwargs["doKerberos"] is False
        assert NS_CIMV2 in handle.services
        handle.login.NTLMLogin.assert_called_once_with("//./root/cimv2", None, None)

    def test_hash_credentials(self, transport, impacket):
        dcom_cls, _ = impacket
        creds = Credentials(username="admin", domain="CLINIC", nt_hash="8846f7eaee8fb117ad06bdd830b7586c")

        transport.connect("WS001", creds)

        assert dcom_cls.call_args.args[4:] == ("", "8846f7eaee8fb117ad06bdd830b7586c")

    def test_ambient_identity_uses_kerberos(self, transport, impacket):
        dcom_cls, _ = impacket

        transport.connect("WS001", None)

        assert dcom_cls.call_args.args[1:4] == ("", "", "")
        assert dcom_cls.call_args.kwargs["doKerberos"] is True

    def test_login_rejected(self, transport, impacket):
        dcom_cls, wmi = impacket
        wmi.IWbemLevel1Login.return_value.NTLMLogin.side_effect = RpcError("rpc_s_access_denied", error_code=5)

        with pytest.raises(AuthenticationFailed):
            transport.connect("WS001", Credentials(username="admin", password="wrong"))

        dcom_cls.return_value.disconnect.assert_called_once()

    def test_unreachable_endpoint(self, transport, impacket):
        dcom_cls, _ = impacket
        dcom_cls.side_effect = OSError("[Errno 113] No route to host")

        with pytest.raises(ProbeConnectionError) as exc_info:
            transport.connect("WS001", None)

        assert not isinstance(exc_info.value, AuthenticationFailed)
        assert "No route to host" in exc_info.value.diagnostic


class TestQuery:

    @pytest.fixture
    def handle(self):
        services = MagicMock(name="IWbemServices")
        return DcomHandle(dcom=MagicMock(), login=MagicMock(), services={NS_SECURITY_CENTER: services})

    def test_enumerates_until_s_false(self, transport, handle):
        services = handle.services[NS_SECURITY_CENTER]
        enum = enumerator(wmi_object(displayName="Acme AV"), wmi_object(displayName="Windows Defender"))
        services.ExecQuery.return_value = enum

        rows = transport.query(handle, ANTIVIRUS_PRODUCT)

        assert rows == [{"displayName": "Acme AV"}, {"displayName": "Windows Defender"}]
        services.ExecQuery.assert_called_once_with("SELECT displayName FROM AntiVirusProduct")
        enum.RemRelease.assert_called_once()

    def test_wmi_error_keeps_code(self, transport, handle):
        services = handle.services[NS_SECURITY_CENTER]
        services.ExecQuery.side_effect = RpcError("WBEM_E_INVALID_CLASS", error_code=0x80041010)

        with pytest.raises(QueryError) as exc_info:
            transport.query(handle, ANTIVIRUS_PRODUCT)

        assert exc_info.value.code == 0x80041010

    def test_enumeration_failure_still_releases(self, transport, handle):
        services = handle.services[NS_SECURITY_CENTER]
        enum = MagicMock()
        enum.Next.side_effect = RpcError("RPC_S_CALL_FAILED", error_code=0x800706BE)
        services.ExecQuery.return_value = enum

        with pytest.raises(QueryError):
            transport.query(handle, ANTIVIRUS_PRODUCT)

        enum.RemRelease.assert_called_once()

    def test_registry_method_call(self, transport, handle):
        services = MagicMock(name="root/default")
        handle.services["root\\default"] = services
        std_reg_prov = MagicMock()
        std_reg_prov.GetDWORDValue.return_value = MagicMock(ReturnValue=0, uValue=1)
        services.GetObject.return_value = (std_reg_prov, None)

        rows = transport.query(handle, FIREWALL_DOMAIN_POLICY)

        assert rows == [{"ReturnValue": 0, "uValue": 1}]
        std_reg_prov.GetDWORDValue.assert_called_once_with(
            0x80000002, "SOFTWARE\\Policies\\Microsoft\\WindowsFirewall\\DomainProfile", "EnableFirewall",
        )

    def test_registry_value_missing(self, transport, handle):
        services = MagicMock()
        handle.services["root\\default"] = services
        std_reg_prov = MagicMock()
        std_reg_prov.GetDWORDValue.return_value = MagicMock(ReturnValue=2, uValue=None)
        services.GetObject.return_value = (std_reg_prov, None)

        with pytest.raises(QueryError) as exc_info:
            transport.query(handle, FIREWALL_DOMAIN_POLICY)

        assert exc_info.value.code == 2

    def test_new_namespace_logged_in_once(self, transport, impacket):
        login = MagicMock()
        login.NTLMLogin.return_value.ExecQuery.side_effect = lambda wql: enumerator()
        handle = DcomHandle(dcom=MagicMock(), login=login)

        transport.query(handle, ANTIVIRUS_PRODUCT)
        transport.query(handle, ANTIVIRUS_PRODUCT)

        login.NTLMLogin.assert_called_once_with("//./root/SecurityCenter2", None, None)


def test_disconnect_releases_everything(transport):
    services = [MagicMock(), MagicMock()]
    login = MagicMock()
    dcom = MagicMock()
    handle = DcomHandle(dcom=dcom, login=login, services={"a": services[0], "b": services[1]})

    transport.disconnect(handle)

    for service in services:
        service.RemRelease.assert_called_once()
    login.RemRelease.assert_called_once()
    dcom.disconnect.assert_called_once()
    assert handle.services == {}
