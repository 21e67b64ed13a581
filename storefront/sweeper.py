"""Cancel pending orders whose checkout was never completed.

Run periodically (cron, k8s CronJob) as ``storefront-sweep``.
"""

import argparse
from datetime import timedelta

from storefront.application.order_service import OrderService
from storefront.core import get_logger, setup_logging
from storefront.core_settings import get_settings
from storefront.infrastructure.db import SessionLocal
from storefront.infrastructure.payment_gateway import PaymentGateway

logger = get_logger(__name__)

def main(argv=None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--older-than-hours",
        type=float,
        default=settings.PENDING_ORDER_TTL_HOURS,
        help="cancel pending orders created more than this many hours ago",
    )
    args = parser.parse_args(argv)
    setup_logging(service_name="storefront-sweep", level=settings.LOG_LEVEL)

    db = SessionLocal()
    try:
        cancelled = OrderService(db).cancel_stale_pending(
            timedelta(hours=args.older_than_hours), PaymentGateway(settings)
        )
    finally:
        db.close()
    logger.info(f"Sweep finished: {cancelled} orders cancelled")
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
