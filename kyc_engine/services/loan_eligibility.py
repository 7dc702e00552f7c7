"""
Loan Eligibility Scorer

Same weighted-aggregation-then-threshold pattern as the KYC engine, so it
reuses WeightedAggregator with its own weight and tier tables:

  1. Five factor risks (credit bureau, income, employment, existing loans, KYC)
  2. Weighted composite risk score + tier
  3. Policy checks (thresholds from Settings) → eligible / rejection reasons
  4. Loan terms for eligible applicants (annuity over the configured tenure)

Convention: HIGHER risk_score = RISKIER applicant.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog

from kyc_engine.core.config import Settings, get_settings
from kyc_engine.core.metrics import LOAN_ASSESSMENTS
from kyc_engine.schemas.assessment import RiskAssessment
from kyc_engine.schemas.loan import (
    CreditBand,
    CreditReport,
    EmploymentDetails,
    EmploymentType,
    ExistingLoans,
    ExpenseDetails,
    IncomeDetails,
    LoanApplication,
    LoanAssessment,
    LoanFactor,
    LoanRiskLevel,
    LoanTerms,
)
from kyc_engine.scoring.aggregator import WeightedAggregator, clamp_score, round_half_up

LOAN_FACTOR_WEIGHTS: dict[str, float] = {
    "credit_score": 0.35,
    "income": 0.25,
    "employment": 0.15,
    "existing_loans": 0.15,
    "kyc_risk": 0.10,
}

# ≤20 LOW, ≤40 MEDIUM, ≤60 HIGH, above → VERY_HIGH (integer scores)
LOAN_TIERS = [
    (61, LoanRiskLevel.VERY_HIGH),
    (41, LoanRiskLevel.HIGH),
    (21, LoanRiskLevel.MEDIUM),
]

LOAN_AGGREGATOR: WeightedAggregator[LoanRiskLevel] = WeightedAggregator(
    LOAN_FACTOR_WEIGHTS, LOAN_TIERS, LoanRiskLevel.LOW,
)

CREDIT_SCORE_MAX = 900
CREDIT_SCORE_SPAN = 600  # 300-900 bureau range
CONSERVATIVE_CREDIT_SCORE = 650
DEFAULT_EXISTING_LOANS_RISK = 30
DEFAULT_KYC_RISK = 50
RISK_PER_EXISTING_LOAN = 15


# ═══════════════════════════════════════════════════════════════
# Factor risks
# ═══════════════════════════════════════════════════════════════

def credit_band(score: int) -> CreditBand:
    if score >= 750:
        return CreditBand.EXCELLENT
    if score >= 700:
        return CreditBand.GOOD
    if score >= 650:
        return CreditBand.FAIR
    if score >= 600:
        return CreditBand.POOR
    return CreditBand.VERY_POOR


def score_credit(report: Optional[CreditReport]) -> LoanFactor:
    # No report → conservative mid-band estimate
    score = report.score if report else CONSERVATIVE_CREDIT_SCORE
    risk = (CREDIT_SCORE_MAX - score) / CREDIT_SCORE_SPAN * 100
    return LoanFactor(
        risk_score=round_half_up(clamp_score(risk)),
        details={
            "score": score,
            "band": credit_band(score).value,
            "assumed": report is None,
            "late_payments": report.late_payments if report else 0,
            "defaults": report.defaults if report else 0,
            "credit_utilization": report.credit_utilization if report else 0.0,
        },
    )


def score_income(income: Optional[IncomeDetails]) -> LoanFactor:
    if income is None:
        return LoanFactor(risk_score=100, details={"monthly_income": 0, "stability": "UNSTABLE"})

    stability = 50
    if income.employment_type == EmploymentType.SALARIED:
        stability += 30
    elif income.employment_type == EmploymentType.SELF_EMPLOYED:
        stability += 10

    if income.months_in_current_job >= 24:
        stability += 20
    elif income.months_in_current_job >= 12:
        stability += 10

    if income.has_consistent_income:
        stability += 15

    label = "STABLE" if stability >= 80 else "MODERATE" if stability >= 60 else "UNSTABLE"
    return LoanFactor(
        risk_score=round_half_up(clamp_score(100 - stability)),
        details={
            "monthly_income": income.monthly_income,
            "annual_income": income.annual_income or income.monthly_income * 12,
            "stability": label,
            "stability_score": stability,
        },
    )


def expense_ratio(expenses: Optional[ExpenseDetails], income: Optional[IncomeDetails]) -> float:
    if expenses is None:
        return 0.0
    monthly_income = (income.monthly_income if income else 0) or 1
    return round(expenses.monthly_expenses / monthly_income, 2)


def score_employment(employment: Optional[EmploymentDetails]) -> LoanFactor:
    if employment is None:
        return LoanFactor(risk_score=100, details={"months_in_current_job": 0, "stability_score": 0})

    months = employment.months_in_current_job
    if months >= 36:
        stability = 100
    elif months >= 24:
        stability = 80
    elif months >= 12:
        stability = 60
    elif months >= 6:
        stability = 40
    else:
        stability = 20

    if employment.employment_type == EmploymentType.GOVERNMENT:
        stability += 10
    if (employment.employer_type or "").upper() == "MNC":
        stability += 5
    if employment.has_previous_experience:
        stability += 5
    stability = min(100, stability)

    return LoanFactor(
        risk_score=100 - stability,
        details={
            "employer": employment.employer_name,
            "verified": employment.verified,
            "months_in_current_job": months,
            "stability_score": stability,
        },
    )


def score_existing_loans(loans: Optional[ExistingLoans]) -> LoanFactor:
    if loans is None:
        return LoanFactor(risk_score=DEFAULT_EXISTING_LOANS_RISK, details={"loan_count": 0, "monthly_emis": 0.0})
    return LoanFactor(
        risk_score=round_half_up(clamp_score(loans.loan_count * RISK_PER_EXISTING_LOAN)),
        details={"loan_count": loans.loan_count, "monthly_emis": loans.monthly_emis},
    )


def score_kyc_risk(assessment: Optional[RiskAssessment]) -> LoanFactor:
    if assessment is None:
        return LoanFactor(risk_score=DEFAULT_KYC_RISK, details={"risk_level": None})
    return LoanFactor(
        risk_score=assessment.overall_score,
        details={
            "risk_level": assessment.risk_level.value,
            "requires_manual_review": assessment.requires_manual_review,
        },
    )


class LoanEligibilityService:

    def __init__(self, settings: Optional[Settings] = None, logger=None):
        self.settings = settings or get_settings()
        self._logger = logger or structlog.get_logger(__name__)

    def assess(self, application: LoanApplication) -> LoanAssessment:
        log = self._logger.bind(applicant_id=application.applicant_id)

        factors = {
            "credit_score": score_credit(application.credit_report),
            "income": score_income(application.income),
            "employment": score_employment(application.employment),
            "existing_loans": score_existing_loans(application.existing_loans),
            "kyc_risk": score_kyc_risk(application.kyc_assessment),
        }
        risk_score = LOAN_AGGREGATOR.aggregate({k: f.risk_score for k, f in factors.items()})
        risk_level = LOAN_AGGREGATOR.classify(risk_score)
        dti = expense_ratio(application.expenses, application.income)

        reasons = self.rejection_reasons(application, factors, risk_score, dti)
        eligible = not reasons
        terms = self.loan_terms(application, factors, risk_score) if eligible else None

        assessment = LoanAssessment(
            applicant_id=application.applicant_id,
            eligible=eligible,
            risk_score=risk_score,
            risk_level=risk_level,
            factors=factors,
            terms=terms,
            rejection_reasons=reasons,
            recommendations=self.recommendations(eligible, terms, factors, dti),
            assessed_at=datetime.now(timezone.utc),
        )

        LOAN_ASSESSMENTS.labels(eligible=str(eligible).lower()).inc()
        log.info(
            "loan_assessment_complete",
            eligible=eligible,
            risk_score=risk_score,
            risk_level=risk_level.value,
            rejection_count=len(reasons),
        )
        return assessment

    def rejection_reasons(
        self,
        application: LoanApplication,
        factors: dict[str, LoanFactor],
        risk_score: int,
        dti: float,
    ) -> list[str]:
        s = self.settings
        reasons: list[str] = []

        credit_score = factors["credit_score"].details["score"]
        if credit_score < s.loan_min_credit_score:
            reasons.append(f"Credit score too low: {credit_score} (required: {s.loan_min_credit_score}+)")

        if dti > s.loan_max_dti_ratio:
            reasons.append(f"Debt-to-income ratio too high: {round(dti * 100)}%")

        months = application.employment.months_in_current_job if application.employment else 0
        if months < s.loan_min_employment_months:
            reasons.append(f"Insufficient employment stability: {months} months")

        loan_count = application.existing_loans.loan_count if application.existing_loans else 0
        if loan_count > s.loan_max_existing_loans:
            reasons.append(f"Too many existing loans: {loan_count}")

        if risk_score > s.loan_max_risk_score:
            reasons.append(f"Overall risk score too high: {risk_score} (maximum: {s.loan_max_risk_score})")

        return reasons

    def loan_terms(
        self,
        application: LoanApplication,
        factors: dict[str, LoanFactor],
        risk_score: int,
    ) -> LoanTerms:
        s = self.settings
        monthly_income = application.income.monthly_income if application.income else 0.0
        monthly_expenses = application.expenses.monthly_expenses if application.expenses else 0.0
        existing_emis = application.existing_loans.monthly_emis if application.existing_loans else 0.0

        disposable = monthly_income - monthly_expenses - existing_emis
        max_emi = max(0.0, disposable * 0.5)

        credit_score = factors["credit_score"].details["score"]
        if credit_score >= 750:
            credit_adjustment = -0.5
        elif credit_score < 650:
            credit_adjustment = 1.0
        else:
            credit_adjustment = 0.0
        interest_rate = round(s.loan_base_interest_rate + risk_score * 0.1 + credit_adjustment, 2)

        months = s.loan_tenure_months
        monthly_rate = interest_rate / 12 / 100
        if monthly_rate > 0:
            max_amount = round(max_emi * (1 - (1 + monthly_rate) ** -months) / monthly_rate)
        else:
            max_amount = round(max_emi * months)

        confidence = round((
            min(100.0, credit_score / CREDIT_SCORE_MAX * 100)
            + min(100.0, monthly_income / 50_000 * 100)
            + max(0, 100 - risk_score)
        ) / 3)

        return LoanTerms(
            max_amount=max_amount,
            recommended_amount=round(max_amount * 0.7),
            interest_rate=interest_rate,
            tenure_months=months,
            max_emi=round(max_emi, 2),
            disposable_income=round(disposable, 2),
            confidence=confidence,
        )

    @staticmethod
    def recommendations(
        eligible: bool,
        terms: Optional[LoanTerms],
        factors: dict[str, LoanFactor],
        dti: float,
    ) -> list[str]:
        if eligible and terms is not None:
            recs = [
                f"Approved for loan up to INR {terms.max_amount:,}",
                f"Recommended amount: INR {terms.recommended_amount:,}",
                f"Interest rate: {terms.interest_rate}% p.a.",
            ]
            if terms.confidence < 70:
                recs.append("Consider improving credit score for better terms")
            return recs

        recs = ["Focus on improving credit score"]
        if factors["credit_score"].details["score"] < 700:
            recs.append("Pay existing EMIs on time to improve credit score")
        if factors["income"].details.get("stability") == "UNSTABLE":
            recs.append("Maintain stable employment for at least 6 months")
        if dti > 0.5:
            recs.append("Reduce monthly expenses to improve loan eligibility")
        return recs
