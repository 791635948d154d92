"""
Scheduled school-wide risk detection (eduguard-detect)

Usage:
    eduguard-detect                         # every active school
    eduguard-detect --school-id <id> [--school-id <id> ...]
    eduguard-detect --legacy-rules          # 30-day attendance, yearly performance

Exit status is 1 when a school could not be processed or any student failed.
"""
import argparse
import json
import logging
from typing import List, Optional

from ..core.clock import Clock
from ..core.constants import SYSTEM_ACTOR_ID
from ..core.logging_config import configure_logging
from ..core.risk_detection import RiskDetectionService
from ..database.config import get_db_session, init_database
from ..database.repositories import SchoolRepository
from ..notifications.dispatcher import BackgroundDispatcher
from ..notifications.guardian import HttpGatewayTransport, create_transport_from_env

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eduguard-detect", description="Run risk detection for whole schools")
    parser.add_argument("--school-id", action="append", dest="school_ids",
                        help="School to process (repeatable); default: every active school")
    parser.add_argument("--actor-id", default=SYSTEM_ACTOR_ID, help="Recorded as creator/updater of flags")
    parser.add_argument("--legacy-rules", action="store_true",
                        help="Use the 30-day attendance and yearly performance evaluators")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    init_database(args.database_url, create_tables=False)

    dispatcher = BackgroundDispatcher()
    transport = create_transport_from_env()
    clock = Clock()
    school_ids: List[str] = []
    guardian_messages = 0
    exit_code = 0

    try:
        with get_db_session() as session:
            school_ids = args.school_ids or [school.id for school in SchoolRepository(session).get_all()]
            service = RiskDetectionService(session, clock, dispatcher, transport)

            for school_id in school_ids:
                try:
                    summary = service.detect_risks_for_school(
                        school_id, actor_id=args.actor_id, legacy_rules=args.legacy_rules
                    )
                except Exception as e:
                    session.rollback()
                    logger.error(f"School risk detection failed: {e}", extra={"school_id": school_id}, exc_info=True)
                    exit_code = 1
                    continue
                if summary.students_failed:
                    exit_code = 1
                print(json.dumps(summary.to_dict()))

            guardian_messages = service.guardian_notifier.queued
    finally:
        # Queued guardian alerts go out before the process exits
        dispatcher.shutdown(wait=True)
        if isinstance(transport, HttpGatewayTransport):
            transport.close()

    logger.info("Risk detection run finished", extra={
        "schools": len(school_ids),
        "guardian_messages": guardian_messages,
        "exit_code": exit_code,
    })
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
