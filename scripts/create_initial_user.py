"""Utility script to create an initial user and its memberships in the database."""

from __future__ import annotations

import argparse
from getpass import getpass

from sqlalchemy.exc import SQLAlchemyError

from server_hub.application.use_cases.users.create_user import create_user
from server_hub.domain.entities import (
    MEMBER_ROLE_MEMBER,
    SCOPE_KIND_GROUP,
    SCOPE_KIND_SERVER,
)
from server_hub.infrastructure.database import SessionLocal, initialize_database
from server_hub.infrastructure.repositories import MembershipRepository


def parse_scope(value: str) -> tuple[str, str, str]:
    """Parse ``kind:id[:role]`` into a membership triple."""

    parts = value.split(":")
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError("Scopes must look like kind:id or kind:id:role")
    kind, scope_id = parts[0].strip().lower(), parts[1].strip()
    role = parts[2].strip().upper() if len(parts) == 3 else MEMBER_ROLE_MEMBER
    if kind not in (SCOPE_KIND_SERVER, SCOPE_KIND_GROUP):
        raise argparse.ArgumentTypeError(f"Unknown scope kind: {parts[0]}")
    if not scope_id:
        raise argparse.ArgumentTypeError("Scope id must not be empty")
    return kind, scope_id, role


def parse_args() -> argparse.Namespace:
    """Parse command line arguments for user creation."""

    parser = argparse.ArgumentParser(
        description="Create an initial user for the notification service.",
    )
    parser.add_argument(
        "--name",
        default="Administrator",
        help="Display name of the user (default: Administrator)",
    )
    parser.add_argument(
        "--email",
        default="admin@example.com",
        help="Email address of the user (default: admin@example.com)",
    )
    parser.add_argument(
        "--password",
        default=None,
        help="Password of the user. Prompted interactively when omitted.",
    )
    parser.add_argument(
        "--scope",
        action="append",
        default=[],
        type=parse_scope,
        metavar="KIND:ID[:ROLE]",
        help="Server or group membership to create, e.g. server:general:OWNER",
    )
    return parser.parse_args()


def main() -> None:
    """Create a user using the provided command line arguments."""

    args = parse_args()

    password = args.password or getpass("User password: ")
    if not password:
        raise SystemExit("No valid password was provided.")

    initialize_database()

    session = SessionLocal()
    try:
        user = create_user(
            session,
            name=args.name,
            email=args.email,
            password=password,
        )
        memberships = MembershipRepository(session)
        for kind, scope_id, role in args.scope:
            memberships.add(
                scope_id=scope_id, scope_kind=kind, user_id=user.id, role=role
            )
    except ValueError as exc:
        session.rollback()
        raise SystemExit(f"Could not create the user: {exc}") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise SystemExit(f"Error while saving the user: {exc}") from exc
    else:
        print(
            "User created:\n"
            f"  ID: {user.id}\n"
            f"  Name: {user.name}\n"
            f"  Email: {user.email}\n"
            f"  Scopes: {', '.join(scope_id for _, scope_id, _ in args.scope) or '-'}"
        )
    finally:
        session.close()


if __name__ == "__main__":
    main()
