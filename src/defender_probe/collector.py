"""
Security status collection.

Runs the fixed query plan against an open session:
1. Antimalware engine state (MSFT_MpComputerStatus)
2. Operating-system class (Win32_OperatingSystem.ProductType)
3. SecurityCenter2 product registrations (workstations only)
4. Domain-profile firewall policy (StdRegProv)

Queries run one at a time. A failed query only downgrades its own fields
to unknown; nothing here raises once the session is open.
"""

import logging
import time
from typing import Dict, Optional

from ._types import FieldState, ProductType, now_utc
from .exceptions import QueryError
from .models import (
    ANTIMALWARE_FIELDS,
    FIREWALL_POLICY_FIELD,
    PRODUCT_FIELDS,
    RECORD_FIELDS,
    FieldResult,
    ProbeReport,
    ResultRecord,
)
from .queries import (
    ANTIMALWARE_ABSENT_CODES,
    ANTIMALWARE_STATUS,
    ANTISPYWARE_PRODUCT,
    ANTIVIRUS_PRODUCT,
    FIREWALL_DOMAIN_POLICY,
    FIREWALL_PRODUCT,
    OPERATING_SYSTEM,
    REG_ERROR_FILE_NOT_FOUND,
)
from .shaping import coerce_dword, product_display_name, shape_antimalware
from .transports import Session

logger = logging.getLogger(__name__)

Fields = Dict[str, FieldResult]

PRODUCT_QUERIES = (
    ("antispyware_product_name", ANTISPYWARE_PRODUCT),
    ("antivirus_product_name", ANTIVIRUS_PRODUCT),
    ("firewall_product_name", FIREWALL_PRODUCT),
)


class StatusCollector:
    """Build a ResultRecord from one open session."""

    async def collect(self, session: Session) -> ResultRecord:
        """Run all queries and return the normalized record."""
        report = await self.collect_report(session)
        return report.record

    async def collect_report(self, session: Session) -> ProbeReport:
        """
        Run all queries and return the record with per-field outcomes.

        Returns:
            ProbeReport; record.host is always session.host
        """
        started_at = now_utc()
        start = time.monotonic()
        fields: Fields = {name: FieldResult() for name in RECORD_FIELDS}

        logger.info(f"Collecting security status from {session.host} via {session.kind.value}")

        await self._collect_antimalware(session, fields)

        product_type = await self._query_product_type(session)
        if product_type is ProductType.WORKSTATION:
            await self._collect_products(session, fields)
        else:
            reason = f"product type {product_type.name.lower()}" if product_type else "product type unknown"
            for name in PRODUCT_FIELDS:
                fields[name] = FieldResult.not_applicable(reason)

        await self._collect_firewall_policy(session, fields)

        record = ResultRecord(host=session.host, **{name: result.value for name, result in fields.items()})
        duration_ms = (time.monotonic() - start) * 1000

        unknown = sum(1 for result in fields.values() if not result.known)
        logger.info(f"Collected {session.host}: {len(fields) - unknown}/{len(fields)} fields known "
                    f"in {duration_ms:.0f}ms")

        return ProbeReport(
            record=record,
            fields=fields,
            transport=session.kind.value,
            started_at=started_at,
            duration_ms=duration_ms,
        )

    # =========================================================================
    # Step 1: antimalware engine
    # =========================================================================

    async def _collect_antimalware(self, session: Session, fields: Fields) -> None:
        try:
            rows = await session.query(ANTIMALWARE_STATUS)
        except QueryError as e:
            if e.code in ANTIMALWARE_ABSENT_CODES:
                logger.info(f"Antimalware subsystem absent on {session.host}: {e}")
                self._mark_antimalware_absent(fields, str(e))
            else:
                logger.warning(f"Antimalware status query failed on {session.host}: {e}")
                for name in ANTIMALWARE_FIELDS:
                    fields[name] = FieldResult.failed(str(e))
            return

        if not rows:
            logger.info(f"No MSFT_MpComputerStatus instance on {session.host}")
            self._mark_antimalware_absent(fields, "no status instance")
            return

        for name, value in shape_antimalware(rows[0]).items():
            fields[name] = FieldResult.observed(value)

    @staticmethod
    def _mark_antimalware_absent(fields: Fields, detail: str) -> None:
        for name in ANTIMALWARE_FIELDS:
            fields[name] = FieldResult.not_applicable(detail)
        fields["antimalware_service_enabled"] = FieldResult(FieldState.OBSERVED, False, detail)

    # =========================================================================
    # Step 2: operating-system class
    # =========================================================================

    async def _query_product_type(self, session: Session) -> Optional[ProductType]:
        """ProductType, or None when it cannot be determined."""
        try:
            rows = await session.query(OPERATING_SYSTEM)
        except QueryError as e:
            logger.warning(f"OS class query failed on {session.host}, treating as non-workstation: {e}")
            return None

        if not rows:
            return None
        product_type = ProductType.from_raw(rows[0].get("ProductType"))
        logger.debug(f"{session.host} product type: {product_type}")
        return product_type

    # =========================================================================
    # Step 3: SecurityCenter2 registrations
    # =========================================================================

    async def _collect_products(self, session: Session, fields: Fields) -> None:
        for name, spec in PRODUCT_QUERIES:
            try:
                rows = await session.query(spec)
            except QueryError as e:
                logger.warning(f"{spec.class_name} lookup failed on {session.host}: {e}")
                fields[name] = FieldResult.failed(str(e))
                continue
            fields[name] = FieldResult.observed(product_display_name(rows))

    # =========================================================================
    # Step 4: firewall policy
    # =========================================================================

    async def _collect_firewall_policy(self, session: Session, fields: Fields) -> None:
        try:
            rows = await session.query(FIREWALL_DOMAIN_POLICY)
        except QueryError as e:
            if e.code == REG_ERROR_FILE_NOT_FOUND:
                logger.debug(f"Domain firewall policy not set on {session.host}")
                fields[FIREWALL_POLICY_FIELD] = FieldResult.not_applicable("policy value not set")
            else:
                logger.warning(f"Firewall policy read failed on {session.host}: {e}")
                fields[FIREWALL_POLICY_FIELD] = FieldResult.failed(str(e))
            return

        value = coerce_dword(rows[0].get("uValue")) if rows else None
        fields[FIREWALL_POLICY_FIELD] = FieldResult.observed(value)
