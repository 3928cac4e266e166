"""
Background tasks for the POS module
"""
from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.company.models import Company
from app.modules.pos.scheduler import AutomaticClosingService
import logging

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def run_automatic_closing_sweeps(self):
    """
    Periodic task: evaluate automatic closing for every active company.

    Each tenant is swept in isolation; a failing tenant is logged and the
    sweep moves on to the next one.
    """
    db = SessionLocal()
    evaluated = 0
    executed = 0
    failed = []
    try:
        tenant_ids = [
            row.id for row in db.query(Company.id).filter(Company.is_active == True).all()
        ]
        logger.info(f"Starting automatic closing sweep for {len(tenant_ids)} companies")

        service = AutomaticClosingService(db)
        for tenant_id in tenant_ids:
            try:
                result = service.run_sweep(tenant_id)
            except Exception as e:
                db.rollback()
                logger.error(f"Automatic closing sweep failed for tenant {tenant_id}: {str(e)}")
                failed.append(str(tenant_id))
                continue
            evaluated += result.points_of_sale_evaluated
            executed += result.closures_executed

        logger.info(
            f"Automatic closing sweep completed: {evaluated} points of sale evaluated, "
            f"{executed} closures executed, {len(failed)} tenants failed"
        )
        return {
            "status": "completed",
            "points_of_sale_evaluated": evaluated,
            "closures_executed": executed,
            "failed_tenants": failed,
        }

    except Exception as e:
        logger.error(f"Automatic closing sweep aborted: {str(e)}")
        raise
    finally:
        db.close()
