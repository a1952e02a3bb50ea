from __future__ import annotations
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from ..models import Company, Display

UNKNOWN_COMPANY = "Unknown Company"

async def get_company_name(db: AsyncSession, company_id: str | None) -> str | None:
    if not company_id:
        return None
    name = (await db.execute(select(Company.name).where(Company.id == company_id))).scalar_one_or_none()
    return name or UNKNOWN_COMPANY

async def get_display(db: AsyncSession, display_id: str) -> Display | None:
    return (await db.execute(select(Display).where(Display.id == display_id))).scalar_one_or_none()

async def list_companies(db: AsyncSession) -> Sequence[Company]:
    return (await db.execute(select(Company).order_by(Company.name.asc()))).scalars().all()

async def list_displays(db: AsyncSession, company_id: str) -> Sequence[Display]:
    return (await db.execute(
        select(Display).where(Display.company_id == company_id).order_by(Display.label.asc())
    )).scalars().all()
