"""
Fiscal Year API Routes
"""
from fastapi import APIRouter, Depends, HTTPException
from datetime import date
from typing import Optional

from orderledger.core.security import get_current_active_user
from orderledger.schemas import FiscalYearResponse
from orderledger.services import fiscal_calendar

router = APIRouter(prefix="/fiscal-year", tags=["Fiscal Year"], dependencies=[Depends(get_current_active_user)])


def _describe(fiscal_year: int) -> FiscalYearResponse:
    start, end = fiscal_calendar.range_of(fiscal_year)
    return FiscalYearResponse(
        fiscal_year=fiscal_year,
        label=fiscal_calendar.label(fiscal_year),
        display_name=fiscal_calendar.display_name(fiscal_year),
        start=start,
        end=end
    )


@router.get("/current", response_model=FiscalYearResponse)
async def current_fiscal_year(on: Optional[date] = None):
    """Fiscal year containing a date (today by default)"""
    return _describe(fiscal_calendar.current_fiscal_year(on))


@router.get("/{name}", response_model=FiscalYearResponse)
async def get_fiscal_year(name: str):
    """Look up a fiscal year by start year (2024) or name (2024-25, FY 2024-25)"""
    try:
        fiscal_year = int(name) if name.isdigit() else fiscal_calendar.parse_display_name(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _describe(fiscal_year)
