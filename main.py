#!/usr/bin/env python3
"""
TaskTrack operator CLI -- account and credential maintenance without the API.

Usage:
  python main.py create-user alice
  python main.py reset-password alice
  python main.py reset-password alice --password-stdin < new_password.txt
  python main.py sweep-tokens

Passwords are prompted for with getpass (never taken as a command-line
argument, which would land in shell history and the process list).

Environment variables:
  AUTH_DB_URL   Credential database (default: auth/tasktrack_auth.db)
  SECRET_KEY    Required unless DEBUG=true; refresh/API token hashes depend on it
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.issuer import CredentialIssuer
from auth.models import User
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import get_settings


def _read_password(from_stdin: bool) -> Optional[str]:
    """Return the new password, or None if the two prompts disagree."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("  New password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _password_ok(password: str) -> bool:
    min_length = get_settings().password_min_length
    if len(password) < min_length:
        print(f"  [!] Password must be at least {min_length} characters.")
        return False
    return True


def create_user(store: CredentialStore, username: str, password: str) -> int:
    """Create an account. Returns a process exit code."""
    username = username.strip()
    if not username:
        print("  [!] Username must not be blank.")
        return 1
    if not _password_ok(password):
        return 1
    try:
        user_id = store.create_user(User(username=username, password_hash=hash_password(password)))
    except IntegrityError:
        print(f"  [!] User '{username}' already exists.")
        return 1
    print(f"  [+] Created user '{username}' (id {user_id}).")
    return 0


def reset_password(store: CredentialStore, username: str, password: str) -> int:
    """Set a new password and sign the user out everywhere. Returns a process exit code.

    Existing access tokens stay valid until they expire; every refresh token
    is deleted so no session can be extended.
    """
    user = store.get_by_username(username)
    if user is None:
        print(f"  [!] No user named '{username}'.")
        return 1
    if not _password_ok(password):
        return 1
    store.update_password_hash(user.id, hash_password(password))
    ended = store.delete_refresh_tokens_for_user(user.id)
    print(f"  [+] Password for '{username}' updated. {ended} session(s) ended.")
    return 0


def sweep_tokens(store: CredentialStore) -> int:
    """Delete expired refresh and API token rows. Returns a process exit code."""
    refresh_removed, api_removed = CredentialIssuer(store).sweep_expired()
    print(f"  [+] Removed {refresh_removed} expired refresh token(s) and {api_removed} expired API token(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tasktrack",
        description="TaskTrack account and credential maintenance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice
  python main.py reset-password alice
  AUTH_DB_URL=postgresql://user:pw@db/tasktrack python main.py sweep-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_create = sub.add_parser("create-user", help="Create a user account")
    p_create.add_argument("username")
    p_create.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    p_reset = sub.add_parser("reset-password", help="Set a new password and end all of the user's sessions")
    p_reset.add_argument("username")
    p_reset.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    sub.add_parser("sweep-tokens", help="Delete expired refresh and API tokens")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    store = CredentialStore(settings.auth_db_url) if settings.auth_db_url else CredentialStore()
    try:
        if args.command == "sweep-tokens":
            return sweep_tokens(store)
        password = _read_password(args.password_stdin)
        if password is None:
            return 1
        if args.command == "create-user":
            return create_user(store, args.username, password)
        return reset_password(store, args.username, password)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
