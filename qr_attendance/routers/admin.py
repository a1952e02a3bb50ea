from __future__ import annotations
import csv
import io
from datetime import datetime
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.broadcast import hub
from ..deps import get_db, require_roles, require_roles_or_query
from ..schemas import ScanList, ScanRead, ScanStats
from ..services.admin import reset_dashboard
from ..services.scans import ScanLedger

router = APIRouter(prefix="/admin", tags=["admin"])

CSV_COLUMNS = ["id", "fullName", "jobTitle", "employeeId", "type", "lat", "lng", "accuracy", "createdAt"]

@router.get("/scans", response_model=ScanList)
async def list_scans(
    search: str | None = None,
    company_id: str | None = Query(default=None, alias="companyId"),
    limit: int = Query(100, ge=1, le=1000),
    role: str = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    rows = await ScanLedger(db).list(company_id=company_id, search=search, limit=limit)
    return ScanList(data=[ScanRead.model_validate(r) for r in rows])

@router.get("/stats", response_model=ScanStats)
async def scan_stats(
    company_id: str | None = Query(default=None, alias="companyId"),
    role: str = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await ScanLedger(db).stats(company_id)

@router.get("/export.csv")
async def export_csv(
    company_id: str | None = Query(default=None, alias="companyId"),
    role: str = Depends(require_roles_or_query("admin")),
    db: AsyncSession = Depends(get_db),
):
    rows = await ScanLedger(db).list(company_id=company_id, limit=100_000)
    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    w.writerow(CSV_COLUMNS)
    for r in rows:
        s = ScanRead.model_validate(r)
        w.writerow([
            s.id, s.full_name_snapshot, s.job_title_snapshot, s.employee_id_snapshot, s.type,
            s.lat, s.lng, s.accuracy, s.created_at.isoformat(),
        ])
    filename = f"Attendance_{datetime.now().strftime('%d-%m-%Y')}.csv"
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.post("/reset")
async def reset(
    company_id: str | None = Query(default=None, alias="companyId"),
    role: str = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    await reset_dashboard(db, hub, company_id=company_id)
    return {"ok": True, "message": "All scans cleared"}
