from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from po_tracker.auth import Capability, Principal, get_current_principal, has_capability
from po_tracker.db import get_db
from po_tracker.models import PaymentSourceType
from po_tracker.services.payment_history_service import PaymentHistoryStatus, list_payment_history

router = APIRouter(prefix='/api/payment-history', tags=['payment-history'])


@router.get('')
def payment_history_index(
    source_type: PaymentSourceType | None = None,
    status: PaymentHistoryStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    entries = list_payment_history(
        db,
        source_type=source_type,
        status=status,
        date_from=date_from,
        date_to=date_to,
        search=search,
        include_admin_costs=has_capability(principal, Capability.MANAGE_ADMIN_COST_ITEMS),
    )
    return {'success': True, 'data': entries}
