"""
FastAPI dependencies for authentication.

Credentials (JWT or API key) are verified by the upstream gateway
authorizer, which forwards the authenticated account id in X-Account-Id.
"""
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, status

from docmeter.errors import AccountNotFoundError
from docmeter.repositories.idempotency_store import ACCOUNTS
from docmeter.services.container import Services, get_services


async def get_current_account(
    x_account_id: Optional[str] = Header(None, alias="X-Account-Id"),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """
    Resolve the account forwarded by the gateway.

    Raises:
        HTTPException 401: If the principal header is missing
        AccountNotFoundError: If the account does not exist
    """
    if not x_account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authenticated principal",
        )

    account = await services.store.get(ACCOUNTS, x_account_id)
    if account is None:
        raise AccountNotFoundError(x_account_id)
    return account
