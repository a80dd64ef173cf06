"""
Savings account and client endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .loans import loan_response
from .system import MicrofinanceSystem, get_system
from .schemas import OpenSavingsAccountRequest, CreateClientRequest
from ..currency import Currency, to_decimal


router = APIRouter()
clients_router = APIRouter()


def account_response(account) -> dict:
    return {
        "id": account.id,
        "account_number": account.account_number,
        "client_id": account.client_id,
        "currency": account.currency.code,
        "balance": str(account.balance.amount),
        "status": account.status.value,
        "opened_at": account.opened_at.isoformat()
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def open_savings_account(
    request: OpenSavingsAccountRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Open a savings account"""
    try:
        currency = Currency.from_code(request.currency)
        opening_balance = to_decimal(request.opening_balance)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    account = system.savings_manager.open_account(
        client_id=request.client_id,
        currency=currency,
        opening_balance=opening_balance
    )
    return {**account_response(account), "message": "Savings account opened successfully"}


@router.get("/{account_id}")
async def get_savings_account(
    account_id: str,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Get savings account details"""
    account = system.savings_manager.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Savings account not found")
    return account_response(account)


@clients_router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(
    request: CreateClientRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Register the client details used on receipts and notifications"""
    client = system.repository.save_client(
        client_id=request.client_id,
        first_name=request.first_name,
        last_name=request.last_name,
        user_id=request.user_id
    )
    return client


@clients_router.get("/{client_id}/loans")
async def get_client_loans(
    client_id: str,
    system: MicrofinanceSystem = Depends(get_system)
):
    """List a client's loans"""
    return {"loans": [loan_response(loan) for loan in system.loan_manager.get_client_loans(client_id)]}
