from __future__ import annotations
import logging
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.broadcast import ADMIN_GROUP, BroadcastHub, DASHBOARD_RESET
from .scans import ScanLedger
from .sessions import SessionStore

logger = logging.getLogger(__name__)

async def reset_dashboard(db: AsyncSession, hub: BroadcastHub, *, company_id: str | None = None) -> dict:
    """
    Irreversible: purge the scan ledger (optionally one company's rows) and retire
    every active code in scope. Displays pick up a new code on their next pull.
    """
    deleted = await ScanLedger(db).delete_all(company_id)
    demoted = await SessionStore(db).demote_active(company_id)
    logger.info("Dashboard reset (company=%s): %d scan(s) deleted, %d session(s) retired", company_id or "*", deleted, demoted)
    hub.publish(ADMIN_GROUP, DASHBOARD_RESET, {})
    return {"deleted": deleted, "retired": demoted}
