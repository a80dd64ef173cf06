"""
Loan endpoints
"""

import math
from datetime import date
from typing import Any, Dict, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status

from .system import MicrofinanceSystem, get_system
from .schemas import (
    PAYMENT_METHODS, CalculateScheduleRequest, CreateLoanRequest,
    DisburseLoanRequest, CancelLoanRequest, RepaymentRequest, UpdateLoanRequest
)
from ..currency import Currency
from ..errors import LoanNotFound
from ..loans import Loan, OriginationRequest


router = APIRouter()


def _parse_date(value: Optional[str], field_name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field_name} must be an ISO date")


def loan_response(loan: Loan) -> Dict[str, Any]:
    """Loan fields for API output; the stored schedule is served separately"""
    data = loan.to_dict()
    data.pop('repayment_schedule', None)
    return data


@router.post("/calculate-schedule")
async def calculate_schedule(
    request: CalculateScheduleRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Preview a repayment schedule without creating a loan"""
    schedule = system.loan_manager.calculate_schedule(
        principal=request.principal,
        interest_rate=request.interest_rate,
        term_months=request.term_months,
        interest_method=request.interest_method,
        payment_frequency=request.payment_frequency,
        start_date=_parse_date(request.start_date, "start_date")
    )
    return schedule.to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Originate a new loan with its repayment schedule"""
    try:
        currency = Currency.from_code(request.currency)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    outcome = system.loan_manager.originate_loan(
        client_id=request.client_id,
        request=OriginationRequest(
            loan_amount=request.amount,
            term_months=request.term_months,
            loan_type=request.loan_type,
            upfront_percentage=request.upfront_percentage,
            interest_rate=request.interest_rate,
            interest_method=request.interest_method,
            payment_frequency=request.payment_frequency,
            disbursement_date=_parse_date(request.disbursement_date, "disbursement_date"),
            default_charges_percentage=request.default_charges_percentage,
            currency=currency
        ),
        loan_purpose=request.loan_purpose
    )
    schedule = outcome.origination.schedule

    return {
        "loan": loan_response(outcome.loan),
        "repayment_schedule": [entry.to_dict() for entry in schedule.entries],
        "schedule_summary": {
            "total_interest": str(outcome.loan.total_interest),
            "total_amount": str(outcome.loan.total_amount),
            "monthly_payment": str(outcome.loan.monthly_payment)
        },
        "degraded": outcome.degraded,
        "warnings": outcome.warnings,
        "message": "Loan created successfully"
    }


@router.get("")
async def list_loans(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by loan status"),
    loan_type: Optional[str] = Query(None, description="Filter by loan type"),
    client_id: Optional[str] = Query(None, description="Filter by borrower"),
    search: Optional[str] = Query(None, description="Part of a loan number"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List loans, newest first, with filters and pagination"""
    loans = system.loan_manager.list_loans(
        status=status_filter, loan_type=loan_type, client_id=client_id, search=search
    )

    total = len(loans)
    offset = (page - 1) * limit
    return {
        "loans": [loan_response(loan) for loan in loans[offset:offset + limit]],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit)
        }
    }


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Get loan details"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise LoanNotFound("Loan not found", loan_id=loan_id)
    return loan_response(loan)


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Change the terms of a pending or approved loan and regenerate its schedule"""
    outcome = system.loan_manager.update_loan_terms(
        loan_id,
        amount=request.amount,
        interest_rate=request.interest_rate,
        term_months=request.term_months,
        interest_method=request.interest_method,
        payment_frequency=request.payment_frequency
    )
    return {
        "loan": loan_response(outcome.loan),
        "repayment_schedule": [entry.to_dict() for entry in outcome.origination.schedule.entries],
        "message": "Loan updated successfully"
    }


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Get the persisted schedule with installment payment status"""
    schedule = system.loan_manager.get_schedule(loan_id)
    loan = system.loan_manager.get_loan(loan_id)
    return {
        "loan": {
            "loan_number": loan.loan_number,
            "amount": str(loan.amount),
            "interest_rate": str(loan.interest_rate),
            "term_months": loan.term_months,
            "interest_method": loan.interest_method.value,
            "monthly_payment": str(loan.monthly_payment),
            "total_interest": str(loan.total_interest),
            "total_amount": str(loan.total_amount)
        },
        "schedule": schedule
    }


@router.post("/{loan_id}/approve")
async def approve_loan(loan_id: str, system: MicrofinanceSystem = Depends(get_system)):
    """Approve a pending loan"""
    loan = system.loan_manager.approve_loan(loan_id)
    return {"loan": loan_response(loan), "message": "Loan approved successfully"}


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    request: Optional[DisburseLoanRequest] = None,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Disburse an approved loan"""
    disbursement_date = _parse_date(request.disbursement_date, "disbursement_date") if request else None
    loan = system.loan_manager.disburse_loan(loan_id, disbursement_date=disbursement_date)
    return {"loan": loan_response(loan), "message": "Loan disbursed successfully"}


@router.post("/{loan_id}/activate")
async def activate_loan(loan_id: str, system: MicrofinanceSystem = Depends(get_system)):
    """Move a disbursed loan into regular repayment"""
    loan = system.loan_manager.activate_loan(loan_id)
    return {"loan": loan_response(loan), "message": "Loan activated successfully"}


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    request: Optional[CancelLoanRequest] = None,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Cancel a loan that has not been disbursed"""
    loan = system.loan_manager.cancel_loan(loan_id, reason=request.reason if request else None)
    return {"loan": loan_response(loan), "message": "Loan cancelled successfully"}


@router.post("/{loan_id}/repay")
async def repay_loan(
    loan_id: str,
    request: RepaymentRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Apply a repayment to the loan's earliest open installment"""
    if request.payment_method and request.payment_method not in PAYMENT_METHODS:
        raise HTTPException(
            status_code=400,
            detail=f"payment_method must be one of {', '.join(PAYMENT_METHODS)}"
        )

    result = system.repayment_processor.process_repayment(
        loan_id=loan_id,
        amount=request.amount,
        payment_date=_parse_date(request.payment_date, "payment_date"),
        payment_method=request.payment_method,
        description=request.description
    )

    return {
        "repayment": result.repayment.to_dict(),
        "transaction": result.transaction.to_dict(),
        "interest_transactions": [t.to_dict() for t in result.interest_transactions],
        "loan": {
            "outstanding_balance": str(result.loan.outstanding_balance),
            "total_paid": str(result.loan.total_paid),
            "status": result.loan.status.value
        },
        "receipt": result.receipt.to_dict(),
        "warnings": result.warnings,
        "message": "Repayment processed successfully"
    }
