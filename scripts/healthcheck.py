"""Simple healthcheck script for local/cron monitoring."""

import sys
from datetime import datetime, timezone

from rewind.config import get_settings
from rewind.models import ProcessingStatus
from rewind.storage.db import Database


def main() -> int:
    """Run healthcheck and return exit code."""
    settings = get_settings()

    issues: list[str] = []

    if not settings.db_path.exists():
        issues.append("Database not found")
    else:
        db = Database(settings.db_path)

        last_sync = db.get_last_sync_time()
        if last_sync is None:
            issues.append("No sync has completed yet")
        else:
            age_hours = (datetime.now(timezone.utc) - last_sync).total_seconds() / 3600
            if age_hours > 48:
                issues.append(f"No sync in {age_hours:.0f} hours")

        counts = db.status_counts()
        if stuck := counts.get(ProcessingStatus.PERMANENTLY_FAILED.value, 0):
            issues.append(f"{stuck} item(s) permanently failed; run 'rewind retry ITEM_ID'")

        for source in db.list_pause_candidates(settings.pause_error_threshold):
            issues.append(f"Source {source.title} failing: {source.last_error_message}")

    if issues:
        print("UNHEALTHY")
        for issue in issues:
            print(f"  - {issue}")
        return 1

    print("HEALTHY")
    return 0


if __name__ == "__main__":
    sys.exit(main())
