"""
Capability contracts for the external collaborators the engine consumes.

The engine never performs I/O itself. Implementations are expected to return
already-resolved values (a cached tamper verdict, a looked-up IP reputation);
the defaults below read what the submission already carries.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from kyc_engine.schemas.signals import DocumentSignal, GeoLocation

TAMPER_SCORE_MAX = 20.0


@dataclass(frozen=True)
class ExternalRisk:
    score: float = 0.0
    issues: list[str] = field(default_factory=list)


class TamperDetector(Protocol):
    def score(self, document: DocumentSignal) -> float:
        """Tampering risk for one document, 0-20."""
        ...


class NetworkRiskProvider(Protocol):
    def ip_risk(self, ip_address: str) -> ExternalRisk:
        ...

    def travel_risk(self, location: GeoLocation, previous_locations: Sequence[GeoLocation]) -> ExternalRisk:
        ...


class SignalTamperDetector:
    """Reads the tamper score the upstream detector attached to the document."""

    def score(self, document: DocumentSignal) -> float:
        return document.tampering_score or 0.0


class NullNetworkRiskProvider:
    """No IP reputation / travel feed configured: contributes nothing."""

    def ip_risk(self, ip_address: str) -> ExternalRisk:
        return ExternalRisk()

    def travel_risk(self, location: GeoLocation, previous_locations: Sequence[GeoLocation]) -> ExternalRisk:
        return ExternalRisk()
