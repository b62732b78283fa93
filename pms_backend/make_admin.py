#!/usr/bin/env python3
"""Grant or revoke the admin role for an account from the command line."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .dependencies import ServiceContainer
from .exceptions import ServiceError
from .models import Role


logger = logging.getLogger(__name__)


async def set_admin(container: ServiceContainer, email: str, revoke: bool = False) -> bool:
    role = Role.USER if revoke else Role.ADMIN
    try:
        account = await container.roles.set_role(email=email, role=role.value)
    except ServiceError as exc:
        logger.error("Failed to set %s role for %s: %s", role.value, email, exc.message)
        return False
    logger.info("Set admin=%s for %s (uid: %s)", role is Role.ADMIN, email, account.uid)
    return True


def main(argv: Optional[Sequence[str]] = None, container: Optional[ServiceContainer] = None) -> int:
    parser = argparse.ArgumentParser(description="Grant the admin role to an account")
    parser.add_argument("email", help="Email of the account to change")
    parser.add_argument(
        "--revoke",
        action="store_true",
        help="Demote the account to a regular user instead",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    success = asyncio.run(set_admin(container or ServiceContainer(), args.email, args.revoke))
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
