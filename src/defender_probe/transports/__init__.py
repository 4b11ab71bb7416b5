"""
Remote-management transports.

Both implement QueryTransport so the collector never sees which protocol
carried a query.
"""

from typing import Dict, Type

from .._types import Transport
from .base import QueryTransport, Row, Session, check_method_result, when_settled
from .dcom import DcomTransport
from .wsman import WSManTransport

TRANSPORTS: Dict[Transport, Type[QueryTransport]] = {
    Transport.DCOM: DcomTransport,
    Transport.WSMAN: WSManTransport,
}


__all__ = [
    'QueryTransport',
    'Row',
    'Session',
    'check_method_result',
    'when_settled',
    'DcomTransport',
    'WSManTransport',
    'TRANSPORTS',
]
