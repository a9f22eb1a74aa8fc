from __future__ import annotations

import argparse
import logging

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from po_tracker.config import settings
from po_tracker.db import SessionLocal
from po_tracker.models import PurchaseOrder
from po_tracker.services.reconciliation_service import RecalculationQueue, RecalculationReport


def recalculate(*, purchase_order_ids: list[int] | None = None, session_factory: sessionmaker = SessionLocal) -> RecalculationReport:
    """Recompute stored prices for the given orders, or every order when none are given."""
    if not purchase_order_ids:
        with session_factory() as db:
            purchase_order_ids = db.execute(select(PurchaseOrder.id).order_by(PurchaseOrder.id.asc())).scalars().all()

    queue = RecalculationQueue()
    queue.enqueue(*purchase_order_ids)
    return queue.drain(session_factory)


def main() -> None:
    parser = argparse.ArgumentParser(description='Recompute derived purchase order prices.')
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        '--purchase-order-id',
        type=int,
        action='append',
        dest='purchase_order_ids',
        help='Order to recompute; repeat for several orders.',
    )
    target.add_argument('--all', action='store_true', help='Recompute every purchase order.')
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format='%(levelname)s %(name)s: %(message)s')
    report = recalculate(purchase_order_ids=None if args.all else args.purchase_order_ids)
    print(f'Cost recalculation complete: succeeded={len(report.succeeded)}, failed={len(report.failed)}')
    if report.failed:
        print('Failed purchase orders: ' + ', '.join(str(po_id) for po_id in report.failed))
        raise SystemExit(1)


if __name__ == '__main__':
    main()
