"""
Pydantic schemas for balance and transaction endpoints.
"""
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class CreditsResponse(BaseModel):
    account_id: str
    plan_id: Optional[str] = None
    credits_balance: Decimal
    free_credits_remaining: int
    total_count: int
    quota_exceeded: bool


class TransactionResponse(BaseModel):
    transaction_id: str
    amount: Decimal
    transaction_type: str
    status: str
    job_id: Optional[str] = None
    reference_id: Optional[str] = None
    used_free_credits: bool = False
    error_message: Optional[str] = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    next_token: Optional[str] = None
