"""
Receipt endpoints
"""

from fastapi import APIRouter, Depends

from .system import MicrofinanceSystem, get_system


router = APIRouter()


@router.get("/repayment/{repayment_id}")
async def get_repayment_receipt(
    repayment_id: str,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Receipt for a paid installment, rebuilt from the stored records"""
    receipt = system.repayment_processor.get_repayment_receipt(repayment_id)
    return {"receipt": receipt.to_dict()}
