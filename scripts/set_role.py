"""
CLI helper to assign a role claim to one identity provider user.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from quotes_backend.auth import ROLE_VALUES
from quotes_backend.config import get_settings
from quotes_backend.dependencies import get_identity_provider
from quotes_backend.directory import DirectoryService
from quotes_backend.errors import ServiceError

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Set a user's role claim")
    parser.add_argument("--uid", required=True, help="Identity provider user id")
    parser.add_argument(
        "--role",
        required=True,
        choices=ROLE_VALUES,
        help="Role to assign",
    )
    parser.add_argument(
        "--replace-claims",
        action="store_true",
        help="Overwrite all custom claims instead of merging the role in",
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
        if args.replace_claims:
            directory.set_role(args.uid, args.role)
        else:
            directory.update_role(args.uid, args.role)
    except ServiceError as exc:
        logger.error("Could not set role for %s: %s", args.uid, exc.public_message)
        return 1
    print(f"{args.uid}: {args.role}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
