import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from enrollment_portal.auth import bootstrap_admin_if_needed
from enrollment_portal.config import load_config
from enrollment_portal.db import Database
from enrollment_portal.provisioning import DatabaseProvisioner


def main() -> int:
    cfg = load_config()
    db = Database.from_config(cfg)
    try:
        result = DatabaseProvisioner(db, lock_timeout_seconds=cfg.DB_INIT_LOCK_TIMEOUT_SECONDS).initialize_database()
        for e in result.errors:
            print(f"  FAILED {e['kind']} {e['object']}: {e['error']}")
        if not result.ok:
            print(f"DB initialization incomplete: {cfg.DB_DSN}")
            return 1

        bootstrap_admin_if_needed(db, cfg)
    finally:
        db.close()

    print(f"DB initialized: {cfg.DB_DSN} (created {result.created_count} objects)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
