"""
Account management endpoints
"""

from typing import List
from fastapi import APIRouter, HTTPException, Depends, Query, status

from .dependencies import get_engine
from .schemas import AccountResponse, CreateAccountRequest
from ..engine import InterestEngine


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
async def create_account(
    request: CreateAccountRequest,
    engine: InterestEngine = Depends(get_engine)
):
    """Open a new loan account"""
    try:
        account = engine.account_manager.create_account(
            account_holder_name=request.account_holder_name,
            principal_amount=request.principal_amount,
            interest_rate=request.interest_rate,
            date_of_disbursal=request.date_of_disbursal
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AccountResponse.from_account(account)


@router.get("", response_model=List[AccountResponse])
async def list_accounts(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=500),
    engine: InterestEngine = Depends(get_engine)
):
    """List accounts, newest first"""
    accounts = engine.account_manager.list_accounts(limit=size, offset=page * size)
    return [AccountResponse.from_account(account) for account in accounts]


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: str,
    engine: InterestEngine = Depends(get_engine)
):
    """Get account details"""
    account = engine.account_manager.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return AccountResponse.from_account(account)
