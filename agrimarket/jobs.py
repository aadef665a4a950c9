"""Entry point for the daily maintenance run.

Schedule it with cron or any job runner::

    0 2 * * * python -m agrimarket.jobs
"""

import structlog
from sqlmodel import Session

from agrimarket.core.logging import configure_logging
from agrimarket.db.session import create_db_and_tables, engine
from agrimarket.services.maintenance import run_maintenance

logger = structlog.get_logger(__name__)


def main() -> dict:
    configure_logging()
    create_db_and_tables()
    with Session(engine) as session:
        result = run_maintenance(session)
    logger.info("maintenance_job_finished", result=result)
    return result


if __name__ == "__main__":
    main()
