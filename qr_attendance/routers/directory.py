from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, require_roles
from ..schemas import CompanyRead, DisplayRead
from ..services.directory import list_companies, list_displays

router = APIRouter(prefix="/api", tags=["directory"])

@router.get("/companies", response_model=list[CompanyRead])
async def companies(role: str = Depends(require_roles("admin", "display", "user")), db: AsyncSession = Depends(get_db)):
    return [CompanyRead.model_validate(c) for c in await list_companies(db)]

@router.get("/companies/{company_id}/displays", response_model=list[DisplayRead])
async def company_displays(
    company_id: str,
    role: str = Depends(require_roles("admin", "display", "user")),
    db: AsyncSession = Depends(get_db),
):
    return [DisplayRead.model_validate(d) for d in await list_displays(db, company_id)]
