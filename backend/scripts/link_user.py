#!/usr/bin/env python3
"""
Link a local user to a SnapTrade identity and store the credential.

Usage:
    1. Set SNAPTRADE_CLIENT_ID and SNAPTRADE_CONSUMER_KEY in .env (or keychain)
    2. Run: python -m scripts.link_user register --user-id <local user id>
    3. Run: python -m scripts.link_user show --user-id <local user id>
    4. After a "user mismatch" rotation, re-link with:
       python -m scripts.link_user rotate --user-id <local user id>

The secret is written to the database only; it is never printed.
"""

import argparse
import os
import sys

# Add backend to path so we can import from there
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from database import get_session_local  # noqa: E402
from integrations.exceptions import ProviderError  # noqa: E402
from integrations.snaptrade_client import PROVIDER_NAME, SnapTradeClient  # noqa: E402
from models.user_credential import UserProviderCredential  # noqa: E402
from services.credential_store import CredentialStore  # noqa: E402
from services.error_normalizer import normalize  # noqa: E402


def get_client() -> SnapTradeClient:
    client = SnapTradeClient()
    if not client.is_configured():
        print("Error: SNAPTRADE_CLIENT_ID and SNAPTRADE_CONSUMER_KEY must be set in backend/.env or keychain")
        sys.exit(1)
    return client


def _latest_credential(db, user_id: str) -> UserProviderCredential | None:
    """Live credential, or the most recently rotated one."""
    live = CredentialStore.find(db, user_id, PROVIDER_NAME)
    if live is not None:
        return live
    return (
        db.query(UserProviderCredential)
        .filter(
            UserProviderCredential.user_id == user_id,
            UserProviderCredential.provider_name == PROVIDER_NAME,
        )
        .order_by(UserProviderCredential.rotated_at.desc())
        .first()
    )


def register_user(user_id: str, client: SnapTradeClient | None = None) -> int:
    """Register ``user_id`` with SnapTrade and store the new credential."""
    client = client or get_client()
    db = get_session_local()()
    try:
        print(f"Registering SnapTrade user for local user: {user_id}")
        try:
            registration = client.register_user(user_id)
        except ProviderError as e:
            print(f"Error registering user: {normalize(e).message}")
            return 1

        CredentialStore.put(db, user_id, PROVIDER_NAME, registration.identity, registration.secret)
        db.commit()
        print(f"SUCCESS! Stored credential for {user_id} (identity {registration.identity})")
        return 0
    finally:
        db.close()


def rotate_secret(user_id: str, client: SnapTradeClient | None = None) -> int:
    """Reset the SnapTrade secret for ``user_id`` and store it as the live credential."""
    client = client or get_client()
    db = get_session_local()()
    try:
        current = _latest_credential(db, user_id)
        if current is None:
            print(f"Error: no {PROVIDER_NAME} credential for {user_id}. Run 'register' first.")
            return 1

        print(f"Rotating secret for user: {user_id}")
        print("This preserves all existing brokerage connections.")
        try:
            registration = client.reset_user_secret(
                current.provider_identity, current.provider_secret
            )
        except ProviderError as e:
            print(f"Error rotating secret: {normalize(e).message}")
            return 1

        CredentialStore.put(db, user_id, PROVIDER_NAME, registration.identity, registration.secret)
        db.commit()
        print(f"SUCCESS! Stored new credential for {user_id}")
        return 0
    finally:
        db.close()


def show_credential(user_id: str) -> int:
    """Print the live credential's identity (never the secret)."""
    db = get_session_local()()
    try:
        credential = CredentialStore.find(db, user_id, PROVIDER_NAME)
        if credential is None:
            print(f"No live {PROVIDER_NAME} credential for {user_id}")
            return 1
        print(f"User:     {credential.user_id}")
        print(f"Provider: {credential.provider_name}")
        print(f"Identity: {credential.provider_identity}")
        print(f"Created:  {credential.created_at}")
        return 0
    finally:
        db.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manage SnapTrade credentials for local users")
    parser.add_argument("command", choices=["register", "rotate", "show"])
    parser.add_argument("--user-id", required=True, help="Local user id")
    args = parser.parse_args(argv)

    if args.command == "register":
        return register_user(args.user_id)
    if args.command == "rotate":
        return rotate_secret(args.user_id)
    return show_credential(args.user_id)


if __name__ == "__main__":
    sys.exit(main())
