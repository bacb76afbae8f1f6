"""
Reconciliation API Endpoints

Admin view of reconciliation anomalies and an on-demand status-poll sweep.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional
import logging

from ..config import Settings
from ..db.init_db import get_db
from ..models.reconciliation import AnomalyKind
from ..services import transaction_store
from ..services.identity_service import ELEVATED_ROLES, Principal
from ..services.webhook_reconciler import WebhookReconciler
from .dependencies import get_reconciler, get_settings, require_roles

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/anomalies")
async def list_anomalies_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    kind: Optional[AnomalyKind] = Query(None),
    gateway: Optional[str] = Query(None),
    principal: Principal = Depends(require_roles(*ELEVATED_ROLES)),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Paginated anomalies, newest first."""
    result = await transaction_store.list_anomalies(db, kind=kind, gateway=gateway, page=page, limit=limit)

    return {
        "success": True,
        "anomalies": [anomaly.model_dump(by_alias=True, mode="json") for anomaly in result.items],
        "pagination": result.pagination(),
    }


@router.post("/sweep")
async def run_sweep_endpoint(
    stale_after_minutes: Optional[int] = Query(None, ge=0, alias="staleAfterMinutes"),
    principal: Principal = Depends(require_roles(*ELEVATED_ROLES)),
    reconciler: WebhookReconciler = Depends(get_reconciler),
    app_settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Run the status-poll sweep once.

    Query Parameters:
        staleAfterMinutes: override the configured staleness threshold
    """
    threshold = app_settings.reconciliation_stale_after_minutes if stale_after_minutes is None else stale_after_minutes
    logger.info(f"Manual reconciliation sweep requested by {principal.owner_id} (stale_after={threshold}min)")

    summary = await reconciler.reconcile_stale(
        db,
        stale_after_minutes=threshold,
        batch_size=app_settings.reconciliation_sweep_batch_size,
    )
    return {"success": True, "summary": summary}
