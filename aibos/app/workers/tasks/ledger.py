"""Daily ledger housekeeping: auto-reversals and overdue documents."""

from __future__ import annotations

from aibos.app.workers.celery_app import celery


@celery.task(name="aibos.app.workers.tasks.ledger.process_reversing_entries")
def process_reversing_entries() -> dict:
    """Post reversing entries whose reversal date has arrived."""
    from aibos.app.core.database import SessionLocal
    from aibos.app.services.periods import process_due_reversals

    db = SessionLocal()
    try:
        processed = process_due_reversals(db)
        db.commit()
        return {"processed": processed}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@celery.task(name="aibos.app.workers.tasks.ledger.mark_overdue_documents")
def mark_overdue_documents() -> dict:
    from aibos.app.core.database import SessionLocal
    from aibos.app.services.bills import mark_overdue_bills
    from aibos.app.services.invoices import mark_overdue_invoices

    db = SessionLocal()
    try:
        invoices = mark_overdue_invoices(db)
        bills = mark_overdue_bills(db)
        db.commit()
        return {"invoices": invoices, "bills": bills}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
