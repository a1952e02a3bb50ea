from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Sequence
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Scan, ScanType
from ..schemas import ScanStats

def local_midnight() -> datetime:
    """Start of today on the server's local clock, as an aware UTC datetime."""
    now = datetime.now().astimezone()
    return now.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(timezone.utc)

def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"

class ScanLedger:
    """Append-only log of accepted scans; rows are never updated."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        *,
        qr_session_id: uuid.UUID,
        display_id: str,
        company_id: str | None,
        full_name_snapshot: str,
        job_title_snapshot: str,
        employee_id_snapshot: str,
        company_name_snapshot: str | None,
        type: str,
        lat: float,
        lng: float,
        accuracy: float,
        image_ref: str | None = None,
    ) -> Scan:
        obj = Scan(
            qr_session_id=qr_session_id,
            display_id=display_id,
            company_id=company_id,
            full_name_snapshot=full_name_snapshot,
            job_title_snapshot=job_title_snapshot,
            employee_id_snapshot=employee_id_snapshot,
            company_name_snapshot=company_name_snapshot,
            type=type,
            lat=lat,
            lng=lng,
            accuracy=accuracy,
            image_ref=image_ref,
        )
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def list(self, *, company_id: str | None = None, search: str | None = None, limit: int = 100) -> Sequence[Scan]:
        # plain substring match, no full-text index
        q = select(Scan)
        if company_id:
            q = q.where(Scan.company_id == company_id)
        if search:
            pattern = _like_pattern(search.strip())
            q = q.where(
                Scan.full_name_snapshot.ilike(pattern, escape="\\")
                | Scan.job_title_snapshot.ilike(pattern, escape="\\")
                | Scan.employee_id_snapshot.ilike(pattern, escape="\\")
            )
        q = q.order_by(Scan.created_at.desc()).limit(limit)
        return (await self.db.execute(q)).scalars().all()

    async def _count(self, *criteria) -> int:
        q = select(func.count()).select_from(Scan).where(*criteria)
        return (await self.db.execute(q)).scalar_one()

    async def stats(self, company_id: str | None = None) -> ScanStats:
        scope = [Scan.company_id == company_id] if company_id else []
        return ScanStats(
            total=await self._count(*scope),
            check_ins=await self._count(*scope, Scan.type == ScanType.CHECK_IN.value),
            check_outs=await self._count(*scope, Scan.type == ScanType.CHECK_OUT.value),
            today=await self._count(*scope, Scan.created_at >= local_midnight()),
        )

    async def delete_all(self, company_id: str | None = None) -> int:
        q = delete(Scan)
        if company_id:
            q = q.where(Scan.company_id == company_id)
        result = await self.db.execute(q.execution_options(synchronize_session=False))
        await self.db.commit()
        return result.rowcount or 0
