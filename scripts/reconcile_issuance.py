"""Create credential holders that approved applications are still owed.

Run after an outage of the document store, or on a schedule:

    python -m scripts.reconcile_issuance
"""

import logging
import sys

from sqlmodel import Session

from app.core.authorization import system_principal
from app.core.config import settings
from app.core.db import engine
from app.repositories import SqlApplicationRepository, SqlHolderRepository
from app.services.workflow import ApplicationWorkflow

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("reconcile_issuance")


def main() -> int:
    with Session(engine) as session:
        workflow = ApplicationWorkflow(
            SqlApplicationRepository(session), SqlHolderRepository(session)
        )
        repaired, failed = workflow.reconcile_pending_issuance(
            system_principal(settings.SYSTEM_REVIEWER_ID)
        )
    for application_id in repaired:
        logger.info("Issued missing holder for %s", application_id)
    for application_id in failed:
        logger.error("Still pending: %s", application_id)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
