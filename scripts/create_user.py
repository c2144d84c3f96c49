"""Create a user (any role) directly in the database.

Usage:
  python scripts/create_user.py --email alice@example.com --password '...' --role supervisor

NOTE: This is intended for local/dev and for creating staff accounts; self-serve
registration through the API only ever creates volunteers.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from enrollment_portal.auth import create_user
from enrollment_portal.config import load_config
from enrollment_portal.db import Database
from enrollment_portal.models import Role
from enrollment_portal.provisioning import DatabaseProvisioner


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=[r.value for r in Role], default=Role.VOLUNTEER.value)
    ap.add_argument("--phone")
    ap.add_argument("--first-name")
    ap.add_argument("--last-name")
    ap.add_argument("--district")
    ap.add_argument("--taluka")
    args = ap.parse_args()

    cfg = load_config()
    db = Database.from_config(cfg)
    try:
        DatabaseProvisioner(db, lock_timeout_seconds=cfg.DB_INIT_LOCK_TIMEOUT_SECONDS).initialize_database()
        with db.connect() as conn:
            u = create_user(
                conn,
                email=args.email,
                password=args.password,
                role=args.role,
                phone=args.phone,
                first_name=args.first_name,
                last_name=args.last_name,
                district=args.district,
                taluka=args.taluka,
            )
    finally:
        db.close()

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
