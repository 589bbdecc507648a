import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.application.services.reconciliation_service import ReconciliationService  # noqa: E402
from app.application.services.subscription_update_service import utc_now  # noqa: E402
from app.core.logging import configure_logging  # noqa: E402
from app.infrastructure.persistence.sqlite import SQLitePersistence  # noqa: E402


def main() -> None:
    load_dotenv()
    configure_logging()

    parser = argparse.ArgumentParser(description="Write real-time statuses back to drifted subscriptions.")
    parser.add_argument("--user-id", type=int, default=None, help="Only reconcile this user's subscriptions.")
    args = parser.parse_args()

    database_path = Path(os.getenv("DATABASE_PATH", "data/app.db")).resolve()
    persistence = SQLitePersistence(database_path)
    try:
        report = ReconciliationService(persistence).reconcile(utc_now(), user_id=args.user_id)
    finally:
        persistence.close()

    print(
        f"Processed {report.processed} subscriptions: {report.updated} updated "
        f"({report.active} active, {report.expiresoon} expiring soon, {report.expired} expired), "
        f"{report.conflicts} skipped on conflict."
    )


if __name__ == "__main__":
    main()
