"""
Inbound signal bundle for one KYC submission.

Everything here is the *output* of upstream collaborators (OCR, image
quality, face comparison, liveness, tamper detection). The engine never
recomputes these values; it only scores them.
"""
from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

# Document types the KYC flow accepts. Anything else is flagged by the
# identity-match assessor.
ALLOWED_DOCUMENT_TYPES = frozenset(
    {"aadhaar", "pan", "address", "passport", "voter_id", "driving_license"}
)
PRIMARY_DOCUMENT_TYPES = frozenset({"aadhaar", "pan"})


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Documents ──

class QualityMetrics(_Frozen):
    """Image quality measurements from the capture pipeline (0-100 scales)."""
    blur_score: Optional[float] = Field(None, ge=0, le=100, description="Sharpness; below 50 is blurry")
    glare_score: Optional[float] = Field(None, ge=0, le=100, description="Glare; above 70 is unreadable")
    brightness: Optional[float] = Field(None, ge=0, le=100, description="Acceptable band is 30-70")


class ExtractedFields(BaseModel):
    """OCR field extraction. Document-specific extras are kept as-is."""
    model_config = ConfigDict(frozen=True, extra="allow")

    name: Optional[str] = None
    dob: Optional[str] = Field(None, description="Raw date string as printed on the document")
    address: Optional[str] = None

    def has_values(self) -> bool:
        return any(
            isinstance(v, str) and v.strip()
            for v in (self.name, self.dob, self.address, *(self.model_extra or {}).values())
        )


class DocumentSignal(_Frozen):
    type: str = Field(description="aadhaar | pan | address | passport | voter_id | driving_license")
    ocr_confidence: Optional[float] = Field(None, ge=0, le=100)
    extracted_fields: ExtractedFields = Field(default_factory=ExtractedFields)
    quality_metrics: Optional[QualityMetrics] = None
    tampering_score: Optional[float] = Field(
        None, ge=0, le=20,
        description="Pre-resolved tamper detector output, 0-20",
    )


# ── Face / liveness ──

class ChallengeOutcome(_Frozen):
    type: str
    completed: bool


class VideoAnalysis(_Frozen):
    has_motion: bool = True
    face_consistency: float = Field(100.0, ge=0, le=100)


class LivenessCheck(_Frozen):
    """Liveness verdict as consumed by the risk engine."""
    passed: bool
    confidence: float = Field(ge=0, le=100)
    anti_spoofing_score: Optional[float] = Field(None, ge=0, le=100)
    challenges: list[ChallengeOutcome] = []
    video_analysis: Optional[VideoAnalysis] = None


class FaceVerification(_Frozen):
    face_match_confidence: Optional[float] = Field(
        None, ge=0, le=100,
        description="Selfie-to-document comparison confidence",
    )
    liveness_result: Optional[LivenessCheck] = None


# ── Location ──

class GeoLocation(_Frozen):
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class AdditionalData(_Frozen):
    ip_address: Optional[str] = None
    location: Optional[GeoLocation] = None
    previous_locations: list[GeoLocation] = []


# ── Top-level submission ──

class KYCSubmission(_Frozen):
    """
    One applicant's complete signal bundle. Consumed once per assessment;
    a re-assessment is a new call producing a new RiskAssessment.
    """
    submission_id: str
    documents: list[DocumentSignal] = []
    face_verification: Optional[FaceVerification] = None
    additional_data: Optional[AdditionalData] = None
