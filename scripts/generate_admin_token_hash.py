#!/usr/bin/env python3
"""
Admin token hash generator for the signalbridge admin API.

Prints a bcrypt hash of the admin token for ADMIN_TOKEN_HASH in the .env file.
Leave the prompt empty to have a random token generated.

Usage:
    python3 scripts/generate_admin_token_hash.py
"""

import getpass
import secrets
import sys

from signalbridge.auth import AdminUser


def main():
    print("=" * 60)
    print("signalbridge Admin Token Hash Generator")
    print("=" * 60)
    print()
    print("Send the token in the x-admin-token header.")
    print("Copy the hash to your .env file as ADMIN_TOKEN_HASH.")
    print()

    token = getpass.getpass("Enter admin token (empty = generate one): ")
    generated = False
    if not token:
        token = secrets.token_urlsafe(32)
        generated = True
    else:
        confirm = getpass.getpass("Confirm admin token: ")
        if token != confirm:
            print("Error: Tokens do not match")
            sys.exit(1)

    print("\nGenerating hash...")
    token_hash = AdminUser.generate_token_hash(token)

    print("\n" + "=" * 60)
    if generated:
        print("Generated admin token (store it somewhere safe, it is not shown again):\n")
        print(f"  {token}\n")
    print("Add this to your .env file:\n")
    print(f"ADMIN_TOKEN_HASH={token_hash}")
    print("\n" + "=" * 60)


if __name__ == "__main__":
    main()
