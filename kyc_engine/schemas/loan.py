"""
Loan eligibility request / response.

Bureau data, income and employment details arrive already fetched; the
scorer never calls the bureau itself.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from kyc_engine.schemas.assessment import RiskAssessment


class LoanRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class CreditBand(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    VERY_POOR = "VERY_POOR"


class EmploymentType(str, Enum):
    SALARIED = "salaried"
    SELF_EMPLOYED = "self-employed"
    GOVERNMENT = "government"
    OTHER = "other"


class CreditReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=300, le=900)
    late_payments: int = Field(0, ge=0)
    defaults: int = Field(0, ge=0)
    credit_utilization: float = Field(0.0, ge=0, le=1)
    existing_liabilities: float = Field(0.0, ge=0)


class IncomeDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    monthly_income: float = Field(ge=0)
    annual_income: Optional[float] = Field(None, ge=0)
    employment_type: Optional[EmploymentType] = None
    months_in_current_job: int = Field(0, ge=0)
    has_consistent_income: bool = False
    sources: list[str] = []


class ExpenseDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    monthly_expenses: float = Field(ge=0)
    essential_expenses: float = Field(0.0, ge=0)


class EmploymentDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    employer_name: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    employer_type: Optional[str] = Field(None, description="e.g. MNC, SME, PSU")
    months_in_current_job: int = Field(0, ge=0)
    has_previous_experience: bool = False
    verified: bool = False


class ExistingLoans(BaseModel):
    model_config = ConfigDict(frozen=True)

    loan_count: int = Field(ge=0)
    total_amount: float = Field(0.0, ge=0)
    monthly_emis: float = Field(0.0, ge=0)


class LoanApplication(BaseModel):
    model_config = ConfigDict(frozen=True)

    applicant_id: str
    credit_report: Optional[CreditReport] = None
    income: Optional[IncomeDetails] = None
    expenses: Optional[ExpenseDetails] = None
    employment: Optional[EmploymentDetails] = None
    existing_loans: Optional[ExistingLoans] = None
    kyc_assessment: Optional[RiskAssessment] = None


class LoanFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_score: int = Field(ge=0, le=100)
    details: dict[str, Any] = {}


class LoanTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_amount: int
    recommended_amount: int
    interest_rate: float
    tenure_months: int
    max_emi: float
    disposable_income: float
    confidence: int = Field(ge=0, le=100)


class LoanAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    applicant_id: str
    eligible: bool
    risk_score: int = Field(ge=0, le=100)
    risk_level: LoanRiskLevel
    factors: dict[str, LoanFactor]
    terms: Optional[LoanTerms] = None
    rejection_reasons: list[str] = []
    recommendations: list[str] = []
    assessed_at: datetime
