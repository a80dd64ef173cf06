"""
Pydantic schemas for API requests and responses
"""

from typing import Optional
from pydantic import BaseModel, Field


PAYMENT_METHODS = ("cash", "bank_transfer", "mobile_money", "check")


# Loan schemas
class CalculateScheduleRequest(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    interest_rate: str = Field(..., description="Annual percentage rate, e.g. '12' for 12%")
    term_months: int
    interest_method: Optional[str] = Field(None, description="declining_balance or flat")
    payment_frequency: Optional[str] = Field(None, description="weekly, biweekly, monthly, quarterly, lump_sum")
    start_date: Optional[str] = None  # ISO date string


class CreateLoanRequest(BaseModel):
    client_id: str
    amount: str = Field(..., description="Requested amount as string, before the upfront deduction")
    term_months: int
    loan_type: Optional[str] = Field("personal", description="personal, excess, business, emergency, micro")
    upfront_percentage: Optional[str] = None
    interest_rate: Optional[str] = None
    interest_method: Optional[str] = None
    payment_frequency: Optional[str] = None
    disbursement_date: Optional[str] = None  # ISO date string
    default_charges_percentage: Optional[str] = None
    currency: str = Field("USD", description="Currency code (USD or LRD)")
    loan_purpose: Optional[str] = None


class UpdateLoanRequest(BaseModel):
    """New terms for a pending or approved loan; omitted fields keep their value"""
    amount: Optional[str] = None
    interest_rate: Optional[str] = None
    term_months: Optional[int] = None
    interest_method: Optional[str] = None
    payment_frequency: Optional[str] = None


class DisburseLoanRequest(BaseModel):
    disbursement_date: Optional[str] = None  # ISO date string


class CancelLoanRequest(BaseModel):
    reason: Optional[str] = None


class RepaymentRequest(BaseModel):
    amount: str = Field(..., description="Payment amount as string")
    payment_method: Optional[str] = Field(None, description="cash, bank_transfer, mobile_money or check")
    payment_date: Optional[str] = None  # ISO date string
    description: Optional[str] = None


# Savings schemas
class OpenSavingsAccountRequest(BaseModel):
    client_id: str
    currency: str = "USD"
    opening_balance: str = "0"


class CreateClientRequest(BaseModel):
    client_id: str
    first_name: str
    last_name: str
    user_id: Optional[str] = None
