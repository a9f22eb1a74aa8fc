from fastapi import BackgroundTasks
from sqlalchemy.orm import sessionmaker

from po_tracker.services.reconciliation_service import RecalculationQueue


def get_recalculation_queue() -> RecalculationQueue:
    return RecalculationQueue()


def schedule_recalculation(
    background_tasks: BackgroundTasks,
    recalc: RecalculationQueue,
    session_factory: sessionmaker,
) -> None:
    # Call only after the triggering write has committed.
    if len(recalc):
        background_tasks.add_task(recalc.drain, session_factory)
