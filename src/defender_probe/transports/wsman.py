"""
CIM over WS-Management (WinRM).

Each query is a short PowerShell script run through pywinrm. The script
always prints one JSON document, either {"ok": true, "rows": [...]} or
{"ok": false, "code": <status>, "message": "..."}, so remote failures keep
their WBEM status code instead of collapsing into a stderr blob.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .._types import Transport
from ..exceptions import AuthenticationFailed, ProbeConnectionError, QueryError, TransportUnsupported
from ..models import Credentials
from ..queries import QuerySpec
from .base import QueryTransport, Row, check_method_result

logger = logging.getLogger(__name__)


CLASS_QUERY_TEMPLATE = r'''
$ErrorActionPreference = 'Stop'
try {
    $rows = @(Get-CimInstance -Namespace '{namespace}' -Query '{wql}')
    $out = @(foreach ($row in $rows) {
        $props = [ordered]@{}
        foreach ($p in $row.CimInstanceProperties) {
            $v = $p.Value
            if ($v -is [datetime]) { $v = $v.ToUniversalTime().ToString('o') }
            $props[$p.Name] = $v
        }
        $props
    })
    @{ ok = $true; rows = $out } | ConvertTo-Json -Depth 4 -Compress
} catch {
    {error_handler}
}
'''

METHOD_CALL_TEMPLATE = r'''
$ErrorActionPreference = 'Stop'
try {
    $r = Invoke-CimMethod -Namespace '{namespace}' -ClassName '{class_name}' -MethodName '{method}' -Arguments {arguments}
    $props = [ordered]@{}
    foreach ($name in @({outputs})) { $props[$name] = $r.$name }
    @{ ok = $true; rows = @($props) } | ConvertTo-Json -Depth 4 -Compress
} catch {
    {error_handler}
}
'''

ERROR_HANDLER = r'''$err = $_.Exception
    $code = $null
    if ($err.ErrorData) { $code = $err.ErrorData.CimInstanceProperties['error_Code'].Value }
    if ($null -eq $code) { $code = $err.HResult }
    @{ ok = $false; code = $code; message = $err.Message } | ConvertTo-Json -Compress'''

CONNECT_CHECK = "$PSVersionTable.PSVersion.Major"


def ps_quote(value: str) -> str:
    """Single-quoted PowerShell literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return f"[uint32]{value}"
    return ps_quote(value)


def ps_hashtable(arguments: Dict[str, Any]) -> str:
    body = "; ".join(f"{name} = {ps_literal(value)}" for name, value in arguments.items())
    return "@{ " + body + " }"


def build_script(spec: QuerySpec) -> str:
    """Render the PowerShell script for one QuerySpec."""
    # str.format would trip over PowerShell braces
    if spec.is_method:
        script = METHOD_CALL_TEMPLATE
        substitutions = {
            "{namespace}": spec.namespace.replace("'", "''"),
            "{class_name}": spec.class_name.replace("'", "''"),
            "{method}": spec.method.replace("'", "''"),
            "{arguments}": ps_hashtable(spec.arguments),
            "{outputs}": ",".join(ps_quote(name) for name in spec.outputs),
        }
    else:
        script = CLASS_QUERY_TEMPLATE
        substitutions = {
            "{namespace}": spec.namespace.replace("'", "''"),
            "{wql}": spec.wql.replace("'", "''"),
        }
    substitutions["{error_handler}"] = ERROR_HANDLER
    for placeholder, value in substitutions.items():
        script = script.replace(placeholder, value)
    return script


def parse_output(spec: QuerySpec, status_code: int, std_out: str, std_err: str) -> List[Row]:
    """Turn script output into rows, or raise QueryError."""
    text = std_out.strip()
    if not text:
        raise QueryError(
            f"no output (status {status_code}): {std_err.strip()[:200]}",
            query=spec.describe(),
        )
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise QueryError(f"unparseable output: {e}", query=spec.describe()) from e

    if not isinstance(document, dict):
        raise QueryError("unexpected output shape", query=spec.describe())

    if not document.get("ok"):
        raise QueryError(
            document.get("message") or "remote query failed",
            code=document.get("code"),
            query=spec.describe(),
        )

    rows = document.get("rows") or []
    if isinstance(rows, dict):
        rows = [rows]

    if spec.is_method:
        if not rows:
            raise QueryError("method returned no out-parameters", query=spec.describe())
        return [check_method_result(spec, rows[0])]
    return rows


class WSManTransport(QueryTransport):
    """
    Web-services-style transport using pywinrm.

    NTLM/Kerberos/CredSSP per ProbeSettings.wsman_auth. Without credentials
    the kerberos transport is used with the caller's ticket cache.
    """

    kind = Transport.WSMAN

    def endpoint(self, host: str) -> str:
        return f"{self.settings.wsman_scheme}://{host}:{self.settings.wsman_port}/wsman"

    def connect(self, host: str, credentials: Optional[Credentials]):
        try:
            import winrm
            from winrm.exceptions import InvalidCredentialsError
        except ImportError as e:
            raise TransportUnsupported(
                host, f"pywinrm is required for WS-Management ({e}). Install with: pip install pywinrm"
            ) from e

        if credentials is not None and credentials.nt_hash is not None:
            raise TransportUnsupported(host, "NTLM hash authentication is only supported over DCOM")

        if credentials is not None:
            auth = (credentials.principal, credentials.password.get_secret_value())
            auth_transport = self.settings.wsman_auth
        else:
            auth = (None, None)
            auth_transport = "kerberos"

        endpoint = self.endpoint(host)
        logger.debug(f"Opening WinRM session to {endpoint} ({auth_transport})")

        try:
            session = winrm.Session(
                endpoint,
                auth=auth,
                transport=auth_transport,
                server_cert_validation='validate' if self.settings.wsman_verify_ssl else 'ignore',
                operation_timeout_sec=int(self.settings.query_timeout),
                read_timeout_sec=int(self.settings.query_timeout) + 10,
            )
            # pywinrm connects lazily; force authentication now
            result = session.run_ps(CONNECT_CHECK)
        except InvalidCredentialsError as e:
            raise AuthenticationFailed(host, str(e)) from e
        except Exception as e:
            raise ProbeConnectionError(host, f"{type(e).__name__}: {e}") from e

        if result.status_code != 0:
            std_err = result.std_err.decode('utf-8', errors='replace') if result.std_err else ""
            raise ProbeConnectionError(host, f"PowerShell unavailable (status {result.status_code}): {std_err[:200]}")

        return session

    def query(self, handle, spec: QuerySpec) -> List[Row]:
        try:
            result = handle.run_ps(build_script(spec))
        except Exception as e:
            raise QueryError(f"{type(e).__name__}: {e}", query=spec.describe()) from e

        return parse_output(
            spec,
            result.status_code,
            result.std_out.decode('utf-8', errors='replace') if result.std_out else "",
            result.std_err.decode('utf-8', errors='replace') if result.std_err else "",
        )

    def disconnect(self, handle) -> None:
        # run_ps opens and deletes a shell per call; only the HTTP session remains
        handle.protocol.transport.close_session()
