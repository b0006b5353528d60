"""
CLI helper that promotes every non-admin user to admin.

Meant for bootstrapping a fresh project where nobody can reach the admin
endpoints yet.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from quotes_backend.auth import Role
from quotes_backend.config import get_settings
from quotes_backend.dependencies import get_identity_provider
from quotes_backend.directory import DirectoryService
from quotes_backend.errors import ServiceError

logger = logging.getLogger(__name__)


def promote_all(directory: DirectoryService, dry_run: bool = False) -> tuple[int, int]:
    """Return (promoted, failed) counts."""
    promoted = failed = 0
    for user in directory.list_users():
        if user.role == Role.ADMIN.value:
            continue
        if dry_run:
            print(f"would promote {user.uid} ({user.email or 'no email'})")
            promoted += 1
            continue
        try:
            directory.update_role(user.uid, Role.ADMIN.value)
        except ServiceError as exc:
            logger.error("Failed to promote %s: %s", user.uid, exc.public_message)
            failed += 1
            continue
        print(f"promoted {user.uid} ({user.email or 'no email'})")
        promoted += 1
    return promoted, failed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Promote all users to admin")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the users that would be promoted without changing them",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    directory = DirectoryService(
        get_identity_provider(),
        allowed_email_domain=settings.allowed_email_domain,
        page_size=settings.list_users_page_size,
    )
    try:
        promoted, failed = promote_all(directory, dry_run=args.dry_run)
    except ServiceError as exc:
        logger.error("Could not list users: %s", exc.public_message)
        return 1
    print(f"{promoted} promoted, {failed} failed")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
