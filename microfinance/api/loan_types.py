"""
Loan type endpoints
"""

from fastapi import APIRouter

from ..loan_types import LOAN_TYPES


router = APIRouter()


@router.get("")
async def list_loan_types():
    """List loan types with their rates, upfront percentages and interest split"""
    return {"loan_types": [config.to_dict() for config in LOAN_TYPES.values()]}
