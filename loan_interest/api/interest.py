"""
Manual interest trigger endpoints

Both runs are blocking, so the handlers are plain functions and execute in
FastAPI's threadpool.
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from .dependencies import get_engine
from .schemas import AccrualResultResponse
from ..engine import InterestEngine
from ..logging_config import get_logger


logger = get_logger("loan_interest.api")

router = APIRouter()


@router.post("/apply-daily", response_model=AccrualResultResponse)
def apply_daily_interest(
    date: Optional[date] = None,
    engine: InterestEngine = Depends(get_engine)
):
    """Run the daily accrual for a date (today in the configured zone by default)"""
    target_date = date or engine.today()
    logger.info(f"Manually triggering daily interest application for date: {target_date}")
    try:
        result = engine.apply_daily_accrual(target_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AccrualResultResponse.from_result(result)


@router.post("/apply-month-end", response_model=AccrualResultResponse)
def apply_month_end_interest(
    date: Optional[date] = None,
    engine: InterestEngine = Depends(get_engine)
):
    """Compound accrued interest into principal for a date"""
    target_date = date or engine.today()
    logger.info(f"Manually triggering month-end interest application for date: {target_date}")
    result = engine.apply_month_end_compounding(target_date)
    return AccrualResultResponse.from_result(result)
