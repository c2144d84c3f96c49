"""Print the database health report and exit non-zero unless it is healthy.

Usage:
  python scripts/check_db.py
"""

import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from enrollment_portal.config import load_config
from enrollment_portal.db import Database
from enrollment_portal.provisioning import HEALTHY, DatabaseProvisioner


def main() -> int:
    cfg = load_config()
    db = Database.from_config(cfg)
    try:
        report = DatabaseProvisioner(db).get_health_status()
    finally:
        db.close()

    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.status == HEALTHY else 1


if __name__ == "__main__":
    sys.exit(main())
