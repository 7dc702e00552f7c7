"""
KYC Risk Factors: five independent assessors

Each assessor:
  1. Reads one slice of the immutable KYCSubmission
  2. Accumulates risk points and human-readable issues
  3. Returns a FactorScore clamped to 0-100

Weights are applied in the engine, not here. No assessor shares state with
another, so the engine may run them in any order or in parallel.

Convention: HIGHER score = HIGHER risk.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from kyc_engine.schemas.assessment import FactorScore
from kyc_engine.schemas.signals import (
    ALLOWED_DOCUMENT_TYPES,
    PRIMARY_DOCUMENT_TYPES,
    AdditionalData,
    DocumentSignal,
    FaceVerification,
)
from kyc_engine.scoring.aggregator import clamp_score, round_half_up
from kyc_engine.scoring.similarity import mean_similarity_to_first
from kyc_engine.services.collaborators import (
    TAMPER_SCORE_MAX,
    NetworkRiskProvider,
    TamperDetector,
)

DOCUMENT_QUALITY = "document_quality"
IDENTITY_MATCH = "identity_match"
LIVENESS = "liveness_score"
DATA_CONSISTENCY = "data_consistency"
LOCATION_RISK = "location_risk"

FACTOR_NAMES = (DOCUMENT_QUALITY, IDENTITY_MATCH, LIVENESS, DATA_CONSISTENCY, LOCATION_RISK)


@dataclass(frozen=True)
class ConsistencyCheck:
    score: float
    issues: list[str] = field(default_factory=list)
    similarity: Optional[float] = None


def _factor(score: float, issues: list[str], **sub_metrics) -> FactorScore:
    return FactorScore(
        score=round_half_up(clamp_score(score)),
        issues=issues,
        sub_metrics=sub_metrics,
    )


# ═══════════════════════════════════════════════════════════════
# 1. DOCUMENT QUALITY  (weight = 0.25)
#    OCR confidence 40%, image quality 30%, tampering 30%
# ═══════════════════════════════════════════════════════════════
OCR_WEIGHT = 0.4
IMAGE_QUALITY_WEIGHT = 0.3
TAMPERING_WEIGHT = 0.3

LOW_OCR_CONFIDENCE = 70
BLUR_THRESHOLD = 50
GLARE_THRESHOLD = 70
BRIGHTNESS_BAND = (30, 70)
TAMPERING_ISSUE_THRESHOLD = 10


def assess_document_quality(
    documents: Sequence[DocumentSignal],
    tamper_detector: TamperDetector,
) -> FactorScore:
    if not documents:
        return FactorScore(score=100, issues=["No documents provided."])

    per_document: list[float] = []
    issues: list[str] = []

    for doc in documents:
        doc_score = 0.0

        if doc.ocr_confidence is not None:
            doc_score += (100 - doc.ocr_confidence) * OCR_WEIGHT
            if doc.ocr_confidence < LOW_OCR_CONFIDENCE:
                issues.append(f"Low OCR confidence for {doc.type}: {doc.ocr_confidence:g}%")
        else:
            issues.append(f"No OCR confidence reported for {doc.type} document")

        if doc.quality_metrics is not None:
            quality = doc.quality_metrics
            image_risk = 0.0
            if quality.blur_score is not None and quality.blur_score < BLUR_THRESHOLD:
                image_risk += 20
                issues.append(f"Blurry {doc.type} document detected")
            if quality.glare_score is not None and quality.glare_score > GLARE_THRESHOLD:
                image_risk += 15
                issues.append(f"Glare detected on {doc.type} document")
            low, high = BRIGHTNESS_BAND
            if quality.brightness is not None and not (low <= quality.brightness <= high):
                image_risk += 10
                issues.append(f"Poor lighting on {doc.type} document")
            doc_score += image_risk * IMAGE_QUALITY_WEIGHT

        tampering = max(0.0, min(TAMPER_SCORE_MAX, float(tamper_detector.score(doc))))
        doc_score += tampering * TAMPERING_WEIGHT
        if tampering >= TAMPERING_ISSUE_THRESHOLD:
            issues.append(f"Possible tampering detected on {doc.type} document")

        per_document.append(min(100.0, doc_score))

    average = sum(per_document) / len(per_document)
    return _factor(
        average,
        issues,
        document_count=len(documents),
        average_quality=round_half_up(100 - average),
    )


# ═══════════════════════════════════════════════════════════════
# 2. IDENTITY MATCH  (weight = 0.30)
#    Face comparison + name consistency (20%) + document types (10%)
# ═══════════════════════════════════════════════════════════════
NO_FACE_VERIFICATION_RISK = 80
LOW_FACE_MATCH_CONFIDENCE = 60
NAME_RISK_WEIGHT = 0.2
NAME_RISK_GATE = 50
DOCUMENT_TYPE_WEIGHT = 0.1
DISALLOWED_TYPE_RISK = 20
MISSING_PRIMARY_ID_RISK = 15


def check_name_consistency(documents: Sequence[DocumentSignal]) -> ConsistencyCheck:
    names = [
        doc.extracted_fields.name for doc in documents
        if doc.extracted_fields.name and doc.extracted_fields.name.strip()
    ]
    if len(names) < 2:
        return ConsistencyCheck(score=0.0)

    similarity = mean_similarity_to_first(names)
    issues = [f"Name inconsistency detected: {', '.join(names)}"] if similarity < 0.8 else []
    return ConsistencyCheck(score=max(0.0, 100 - similarity * 100), issues=issues, similarity=similarity)


def validate_document_types(documents: Sequence[DocumentSignal]) -> ConsistencyCheck:
    score = 0.0
    issues: list[str] = []

    for doc in documents:
        if doc.type not in ALLOWED_DOCUMENT_TYPES:
            score += DISALLOWED_TYPE_RISK
            issues.append(f"Invalid document type: {doc.type}")

    if not any(doc.type in PRIMARY_DOCUMENT_TYPES for doc in documents):
        score += MISSING_PRIMARY_ID_RISK
        issues.append("Missing primary identity document (Aadhaar/PAN)")

    return ConsistencyCheck(score=score, issues=issues)


def assess_identity_match(
    documents: Sequence[DocumentSignal],
    face_verification: Optional[FaceVerification],
) -> FactorScore:
    issues: list[str] = []
    face_confidence = face_verification.face_match_confidence if face_verification else None

    if face_confidence is None:
        risk = float(NO_FACE_VERIFICATION_RISK)
        issues.append("No face verification performed")
    else:
        risk = 100 - face_confidence
        if face_confidence < LOW_FACE_MATCH_CONFIDENCE:
            issues.append(f"Low face match confidence: {face_confidence:g}%")

    names = check_name_consistency(documents)
    if names.score > NAME_RISK_GATE:
        risk += names.score * NAME_RISK_WEIGHT
        issues.extend(names.issues)

    doc_types = validate_document_types(documents)
    risk += doc_types.score * DOCUMENT_TYPE_WEIGHT
    issues.extend(doc_types.issues)

    return _factor(
        risk,
        issues,
        face_match_confidence=face_confidence,
        name_consistency=round_half_up(names.score),
        document_type_risk=doc_types.score,
    )


# ═══════════════════════════════════════════════════════════════
# 3. LIVENESS  (weight = 0.20)
# ═══════════════════════════════════════════════════════════════
NO_LIVENESS_RISK = 80
LIVENESS_FAILED_RISK = 40
LIVENESS_CONFIDENCE_TARGET = 70
LIVENESS_SHORTFALL_RATE = 0.5  # 70-point shortfall → 35 max
FAILED_CHALLENGE_RISK = 10
LOW_ANTI_SPOOFING = 60
LOW_ANTI_SPOOFING_RISK = 20
NO_MOTION_RISK = 15
FACE_CONSISTENCY_THRESHOLD = 70
FACE_INCONSISTENCY_RISK = 10


def assess_liveness(face_verification: Optional[FaceVerification]) -> FactorScore:
    check = face_verification.liveness_result if face_verification else None
    if check is None:
        return FactorScore(score=NO_LIVENESS_RISK, issues=["No liveness check performed"])

    risk = 0.0
    issues: list[str] = []

    if not check.passed:
        risk += LIVENESS_FAILED_RISK
        issues.append("Liveness check failed")

    if check.confidence < LIVENESS_CONFIDENCE_TARGET:
        risk += (LIVENESS_CONFIDENCE_TARGET - check.confidence) * LIVENESS_SHORTFALL_RATE
        issues.append(f"Low liveness confidence: {check.confidence:g}%")

    failed = [c for c in check.challenges if not c.completed]
    if failed:
        risk += len(failed) * FAILED_CHALLENGE_RISK
        issues.append(f"{len(failed)} liveness challenges failed")

    if check.anti_spoofing_score is not None and check.anti_spoofing_score < LOW_ANTI_SPOOFING:
        risk += LOW_ANTI_SPOOFING_RISK
        issues.append(f"Low anti-spoofing score: {check.anti_spoofing_score:g}")

    if check.video_analysis is not None:
        video = check.video_analysis
        if not video.has_motion:
            risk += NO_MOTION_RISK
            issues.append("No motion detected in liveness video")
        if video.face_consistency < FACE_CONSISTENCY_THRESHOLD:
            risk += FACE_INCONSISTENCY_RISK
            issues.append("Inconsistent face detection during liveness check")

    return _factor(
        risk,
        issues,
        confidence=check.confidence,
        anti_spoofing_score=check.anti_spoofing_score,
        challenges_completed=sum(1 for c in check.challenges if c.completed),
    )


# ═══════════════════════════════════════════════════════════════
# 4. DATA CONSISTENCY  (weight = 0.15)
#    Name 40%, date of birth 30%, address 30%
# ═══════════════════════════════════════════════════════════════
INSUFFICIENT_DOCUMENTS_RISK = 30
NAME_CONSISTENCY_WEIGHT = 0.4
DOB_CONSISTENCY_WEIGHT = 0.3
ADDRESS_CONSISTENCY_WEIGHT = 0.3
DOB_MISMATCH_RISK = 50
ADDRESS_SIMILARITY_THRESHOLD = 0.6

_DOB_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d", "%Y/%m/%d")
_ADDRESS_NOISE = re.compile(r"[^a-z0-9\s]")


def normalize_dob(raw: str) -> str:
    """ISO date for the formats printed on Indian ID documents; the trimmed input otherwise."""
    value = raw.strip()
    for fmt in _DOB_FORMATS:
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    return value


def check_dob_consistency(documents: Sequence[DocumentSignal]) -> ConsistencyCheck:
    dobs = [
        normalize_dob(doc.extracted_fields.dob) for doc in documents
        if doc.extracted_fields.dob and doc.extracted_fields.dob.strip()
    ]
    if len(dobs) < 2:
        return ConsistencyCheck(score=0.0)

    unique = list(dict.fromkeys(dobs))
    if len(unique) > 1:
        return ConsistencyCheck(score=DOB_MISMATCH_RISK, issues=[f"DOB inconsistency: {', '.join(unique)}"])
    return ConsistencyCheck(score=0.0)


def check_address_consistency(documents: Sequence[DocumentSignal]) -> ConsistencyCheck:
    addresses = [
        _ADDRESS_NOISE.sub("", doc.extracted_fields.address.lower()) for doc in documents
        if doc.extracted_fields.address and doc.extracted_fields.address.strip()
    ]
    if len(addresses) < 2:
        return ConsistencyCheck(score=0.0)

    similarity = mean_similarity_to_first(addresses)
    issues = ["Address inconsistency detected"] if similarity < ADDRESS_SIMILARITY_THRESHOLD else []
    return ConsistencyCheck(score=max(0.0, 50 - similarity * 50), issues=issues, similarity=similarity)


def assess_data_consistency(documents: Sequence[DocumentSignal]) -> FactorScore:
    with_fields = [doc for doc in documents if doc.extracted_fields.has_values()]
    if len(with_fields) < 2:
        return FactorScore(
            score=INSUFFICIENT_DOCUMENTS_RISK,
            issues=["Insufficient documents for consistency check"],
        )

    names = check_name_consistency(with_fields)
    dobs = check_dob_consistency(with_fields)
    addresses = check_address_consistency(with_fields)

    risk = (
        names.score * NAME_CONSISTENCY_WEIGHT
        + dobs.score * DOB_CONSISTENCY_WEIGHT
        + addresses.score * ADDRESS_CONSISTENCY_WEIGHT
    )
    return _factor(
        risk,
        [*names.issues, *dobs.issues, *addresses.issues],
        name_consistency=round_half_up(names.score),
        dob_consistency=round_half_up(dobs.score),
        address_consistency=round_half_up(addresses.score),
    )


# ═══════════════════════════════════════════════════════════════
# 5. LOCATION RISK  (weight = 0.10)
#    Base 20, high-risk region +30, plus external IP / travel risk
# ═══════════════════════════════════════════════════════════════
LOCATION_BASE_RISK = 20
HIGH_RISK_REGION_RISK = 30


def assess_location_risk(
    additional_data: Optional[AdditionalData],
    high_risk_regions: Sequence[str],
    network_risk: NetworkRiskProvider,
) -> FactorScore:
    risk = float(LOCATION_BASE_RISK)
    issues: list[str] = []
    high_risk_match: Optional[str] = None

    location = additional_data.location if additional_data else None
    if location is None:
        issues.append("No location data available")
    else:
        regions = {r.strip().upper() for r in high_risk_regions}
        high_risk_match = next(
            (v for v in (location.state, location.country) if v and v.strip().upper() in regions),
            None,
        )
        if high_risk_match:
            risk += HIGH_RISK_REGION_RISK
            issues.append(f"High-risk location detected: {high_risk_match}")

        if additional_data.previous_locations:
            travel = network_risk.travel_risk(location, additional_data.previous_locations)
            risk += travel.score
            issues.extend(travel.issues)

    if additional_data and additional_data.ip_address:
        ip = network_risk.ip_risk(additional_data.ip_address)
        risk += ip.score
        issues.extend(ip.issues)

    return _factor(
        risk,
        issues,
        high_risk_region=high_risk_match,
        location=location.model_dump(exclude_none=True) if location else None,
    )
