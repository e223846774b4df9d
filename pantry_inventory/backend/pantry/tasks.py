from pantry.database import get_db_sync
from pantry.models import Item, Withdrawal
from pantry.reports import month_bounds, summarize_withdrawals
from sqlalchemy.orm import Session
from sqlalchemy import select
from pantry.celery_app import celery_app
import logging

logger = logging.getLogger('celery')

@celery_app.task(name='tasks.generate_monthly_report')
def generate_monthly_report(year_month: str):
    logger.info(f"Starting generate_monthly_report task for {year_month}")
    start_date, end_date = month_bounds(year_month)
    db: Session = next(get_db_sync())
    try:
        logger.info(f"Querying withdrawals from {start_date} to {end_date}")
        result = db.execute(
            select(Withdrawal.user_id, Withdrawal.quantity, Item.name)
            .outerjoin(Item, Withdrawal.item_id == Item.id)
            .where(
                Withdrawal.withdrawn_at >= start_date,
                Withdrawal.withdrawn_at <= end_date,
            )
        ).all()
        logger.info(f"Found {len(result)} withdrawals")
        rows = [
            {"user_id": user_id, "quantity": quantity, "item": {"name": name} if name else None}
            for user_id, quantity, name in result
        ]
        report = summarize_withdrawals(rows, year_month)
        logger.info("Task completed successfully")
        return report.model_dump()
    except Exception as e:
        logger.error(f"Task failed: {str(e)}")
        raise Exception(f"Failed to generate monthly report: {str(e)}")
    finally:
        db.close()
