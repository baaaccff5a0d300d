"""
Dashboard endpoints
"""

from fastapi import APIRouter, Depends

from .system import LendingSystem, get_current_user, get_lending_system


router = APIRouter()


@router.get("/summary")
async def get_portfolio_summary(
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Outstanding and recovered principal in the reporting currency"""
    loans = system.loan_manager.get_loans_for_participant(user)
    totals = await system.aggregator.aggregate(loans)
    return {
        **totals.to_dict(),
        "loan_count": len(loans)
    }
