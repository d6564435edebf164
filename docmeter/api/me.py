"""
Account endpoints.
Returns balance and ledger information for the authenticated account.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from docmeter.auth.dependencies import get_current_account
from docmeter.schemas.credit import CreditsResponse, TransactionListResponse, TransactionResponse
from docmeter.services.container import Services, get_services

router = APIRouter()


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Current balance, free credits and usage."""
    balance = await services.ledger.get_balance(account["account_id"])
    return CreditsResponse(**balance)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=100),
    next_token: Optional[str] = Query(None),
    account: Dict[str, Any] = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Ledger entries, newest first."""
    transactions, token = await services.ledger.list_transactions(
        account["account_id"], limit=limit, next_token=next_token
    )
    return TransactionListResponse(
        transactions=[TransactionResponse(**t) for t in transactions],
        next_token=token,
    )
