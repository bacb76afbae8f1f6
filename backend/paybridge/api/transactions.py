"""
Transactions API Endpoints

Owner-scoped transaction lookup, paginated listing and the live event
stream.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional
import logging

from ..db.init_db import get_db
from ..models.transactions import GatewayId, TransactionStatus
from ..services import transaction_store
from ..services.identity_service import TRANSACTION_LIST_ROLES, TRANSACTION_READ_ROLES, Principal
from ..services.notification_service import TransactionEventHub, format_sse_event
from .dependencies import get_event_hub, get_principal, require_roles

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_transactions_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[TransactionStatus] = Query(None),
    gateway: Optional[GatewayId] = Query(None),
    principal: Principal = Depends(require_roles(*TRANSACTION_LIST_ROLES)),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    List transactions, newest first.

    Admins see every owner; other roles see only their own.

    Query Parameters:
        page: 1-based page number
        limit: page size (1-100)
        status: optional status filter
        gateway: optional gateway filter
    """
    result = await transaction_store.list_transactions(
        db,
        owner_id=principal.visible_owner(),
        status=status,
        gateway=gateway,
        page=page,
        limit=limit,
    )

    return {
        "success": True,
        "transactions": [transaction.to_api() for transaction in result.items],
        "pagination": result.pagination(),
    }


@router.get("/events")
async def transaction_events_endpoint(
    principal: Principal = Depends(get_principal),
    hub: TransactionEventHub = Depends(get_event_hub)
) -> StreamingResponse:
    """
    Server-Sent Events stream of the caller's transaction changes.

    Events: transaction.created, transaction.updated. Admins receive
    events for every owner.
    """
    owner_key = hub.ALL_OWNERS if principal.is_elevated else principal.owner_id
    logger.info(f"Event stream opened for {principal.owner_id} ({principal.role})")

    async def event_generator():
        async for event in hub.stream(owner_key):
            yield format_sse_event(event)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


@router.get("/{transaction_id}")
async def get_transaction_endpoint(
    transaction_id: str,
    principal: Principal = Depends(require_roles(*TRANSACTION_READ_ROLES)),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Get one transaction.

    Returns 404 both when it does not exist and when it belongs to another
    owner.
    """
    logger.debug(f"Retrieving transaction: {transaction_id}")

    transaction = await transaction_store.get_owned_transaction(
        db, transaction_id, principal.visible_owner()
    )
    return {"success": True, "transaction": transaction.to_api()}
