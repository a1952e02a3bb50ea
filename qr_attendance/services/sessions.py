from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Callable
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import QrSession, QrStatus, utcnow

logger = logging.getLogger(__name__)

# (session_id, created_at) -> signed token
TokenMinter = Callable[[uuid.UUID, datetime], str]

class SessionStore:
    """
    QR sessions keyed by token and by display.

    Every status change is a conditional UPDATE committed on its own, so the
    database decides which of several concurrent writers wins.
    """

    def __init__(self, db: AsyncSession, *, create_attempts: int = 3):
        self.db = db
        self.create_attempts = create_attempts

    async def find_by_token(self, token: str) -> QrSession | None:
        return (await self.db.execute(
            select(QrSession).where(QrSession.token == token).execution_options(populate_existing=True)
        )).scalar_one_or_none()

    async def find_active_by_display(self, display_id: str) -> QrSession | None:
        return (await self.db.execute(
            select(QrSession)
            .where(QrSession.display_id == display_id, QrSession.status == QrStatus.ACTIVE.value)
            .order_by(QrSession.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )).scalars().first()

    async def create(
        self,
        *,
        display_id: str,
        mint: TokenMinter,
        company_id: str | None = None,
        issued_by: str = "system",
    ) -> QrSession:
        """Demote the display's active session and insert the new one in one transaction."""
        conflict: IntegrityError | None = None
        for attempt in range(1, self.create_attempts + 1):
            now = utcnow()
            session_id = uuid.uuid4()
            await self.db.execute(
                update(QrSession)
                .where(QrSession.display_id == display_id, QrSession.status == QrStatus.ACTIVE.value)
                .values(status=QrStatus.USED.value, used_at=now)
                .execution_options(synchronize_session=False)
            )
            row = QrSession(
                id=session_id,
                token=mint(session_id, now),
                display_id=display_id,
                company_id=company_id,
                status=QrStatus.ACTIVE.value,
                issued_by=issued_by,
                created_at=now,
            )
            self.db.add(row)
            try:
                await self.db.commit()
            except IntegrityError as exc:
                conflict = exc
                # a concurrent create for this display committed first
                await self.db.rollback()
                logger.info("Concurrent issue on display %s, retrying (%d/%d)", display_id, attempt, self.create_attempts)
                continue
            return row
        raise RuntimeError(f"could not issue a session for display {display_id}") from conflict

    async def _transition(self, token: str, *, from_statuses: tuple[str, ...], to_status: str, **values) -> QrSession | None:
        result = await self.db.execute(
            update(QrSession)
            .where(QrSession.token == token, QrSession.status.in_(from_statuses))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        # commit either way; a rollback would expire instances the caller still holds
        await self.db.commit()
        if result.rowcount != 1:
            return None
        return await self.find_by_token(token)

    async def mark_used(self, token: str, *, force: bool = False) -> QrSession | None:
        """
        The single-use gate. Returns the session only to the caller whose UPDATE
        moved it out of `active`; None for unknown tokens and for every losing
        concurrent caller. `force` also re-marks a `used` session (multi-scan mode).
        """
        allowed = (QrStatus.ACTIVE.value, QrStatus.USED.value) if force else (QrStatus.ACTIVE.value,)
        return await self._transition(token, from_statuses=allowed, to_status=QrStatus.USED.value, used_at=utcnow())

    async def mark_expired(self, token: str) -> QrSession | None:
        return await self._transition(token, from_statuses=(QrStatus.ACTIVE.value,), to_status=QrStatus.EXPIRED.value)

    async def expire_older_than(self, cutoff: datetime) -> int:
        result = await self.db.execute(
            update(QrSession)
            .where(QrSession.status == QrStatus.ACTIVE.value, QrSession.created_at < cutoff)
            .values(status=QrStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def demote_active(self, company_id: str | None = None) -> int:
        q = update(QrSession).where(QrSession.status == QrStatus.ACTIVE.value)
        if company_id:
            q = q.where(QrSession.company_id == company_id)
        result = await self.db.execute(
            q.values(status=QrStatus.USED.value, used_at=utcnow()).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def delete_all_for_company(self, company_id: str | None = None) -> int:
        q = delete(QrSession)
        if company_id:
            q = q.where(QrSession.company_id == company_id)
        result = await self.db.execute(q.execution_options(synchronize_session=False))
        await self.db.commit()
        return result.rowcount or 0
