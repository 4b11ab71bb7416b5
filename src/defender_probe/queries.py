"""
The fixed query plan.

Each QuerySpec names a WMI namespace and either a class to enumerate or a
static method to invoke. Transports translate a spec into their own wire
form (WQL over DCOM, Get-CimInstance/Invoke-CimMethod over WS-Management).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class QuerySpec:
    """One read-only query against a session."""

    namespace: str
    class_name: str
    properties: Tuple[str, ...] = ()  # empty = all properties
    method: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    outputs: Tuple[str, ...] = ()  # out-parameters read back from a method call

    @property
    def is_method(self) -> bool:
        return self.method is not None

    @property
    def wql(self) -> str:
        """WQL SELECT for class enumeration."""
        columns = ", ".join(self.properties) if self.properties else "*"
        return f"SELECT {columns} FROM {self.class_name}"

    def describe(self) -> str:
        target = f"{self.class_name}.{self.method}" if self.method else self.class_name
        return f"{self.namespace}:{target}"


# ============================================================================
# Namespaces
# ============================================================================

NS_DEFENDER = "root\\Microsoft\\Windows\\Defender"
NS_CIMV2 = "root\\cimv2"
NS_SECURITY_CENTER = "root\\SecurityCenter2"
NS_DEFAULT = "root\\default"

# ============================================================================
# Recognized status codes
# ============================================================================

WBEM_E_INVALID_NAMESPACE = 0x8004100E
WBEM_E_INVALID_CLASS = 0x80041010
MP_E_SERVICE_NOT_RUNNING = 0x800106BA

# Antimalware subsystem absent / not applicable on this target
ANTIMALWARE_ABSENT_CODES = frozenset({
    WBEM_E_INVALID_NAMESPACE,
    WBEM_E_INVALID_CLASS,
    MP_E_SERVICE_NOT_RUNNING,
})

HKEY_LOCAL_MACHINE = 0x80000002

# StdRegProv ReturnValue meanings (Win32 error codes)
REG_ERROR_FILE_NOT_FOUND = 2
REG_ERROR_ACCESS_DENIED = 5

# ============================================================================
# Query plan
# ============================================================================

ANTIMALWARE_STATUS = QuerySpec(
    namespace=NS_DEFENDER,
    class_name="MSFT_MpComputerStatus",
    properties=(
        "AMServiceEnabled",
        "AntispywareEnabled",
        "AntivirusEnabled",
        "AntivirusSignatureLastUpdated",
        "BehaviorMonitorEnabled",
        "IoavProtectionEnabled",
        "NISEnabled",
        "OnAccessProtectionEnabled",
        "RealTimeProtectionEnabled",
    ),
)

OPERATING_SYSTEM = QuerySpec(
    namespace=NS_CIMV2,
    class_name="Win32_OperatingSystem",
    properties=("ProductType",),
)

ANTISPYWARE_PRODUCT = QuerySpec(
    namespace=NS_SECURITY_CENTER,
    class_name="AntiSpywareProduct",
    properties=("displayName",),
)

ANTIVIRUS_PRODUCT = QuerySpec(
    namespace=NS_SECURITY_CENTER,
    class_name="AntiVirusProduct",
    properties=("displayName",),
)

FIREWALL_PRODUCT = QuerySpec(
    namespace=NS_SECURITY_CENTER,
    class_name="FirewallProduct",
    properties=("displayName",),
)

FIREWALL_POLICY_KEY = "SOFTWARE\\Policies\\Microsoft\\WindowsFirewall\\DomainProfile"
FIREWALL_POLICY_VALUE = "EnableFirewall"


def registry_dword(hive: int, key: str, value_name: str) -> QuerySpec:
    """StdRegProv.GetDWORDValue call for one registry value."""
    return QuerySpec(
        namespace=NS_DEFAULT,
        class_name="StdRegProv",
        method="GetDWORDValue",
        arguments={"hDefKey": hive, "sSubKeyName": key, "sValueName": value_name},
        outputs=("ReturnValue", "uValue"),
    )


FIREWALL_DOMAIN_POLICY = registry_dword(HKEY_LOCAL_MACHINE, FIREWALL_POLICY_KEY, FIREWALL_POLICY_VALUE)
