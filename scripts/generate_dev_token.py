#!/usr/bin/env python3
"""
Generate a Supabase-style access token for local development.

The token is signed with SUPABASE_JWT_SECRET so the dessert service accepts it
without a real Supabase project. Add the email to ADMIN_EMAILS to reach the
/admin routes.

Usage:
python scripts/generate_dev_token.py --email ana@example.com [--name "Ana"] [--hours 24]
"""

import argparse
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

SECRET_KEY = os.getenv("SUPABASE_JWT_SECRET", "dev-secret-key-change-in-production")
ALGORITHM = "HS256"


def generate_dev_token(
    email: str,
    name: Optional[str] = None,
    subject: Optional[str] = None,
    expires_hours: int = 24,
    secret: str = SECRET_KEY,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject or str(uuid.uuid4()),
        "email": email,
        "role": "authenticated",
        "iat": int(now.timestamp()),
        "user_metadata": {"full_name": name} if name else {},
    }

    if expires_hours > 0:
        payload["exp"] = int((now + timedelta(hours=expires_hours)).timestamp())

    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def main():
    parser = argparse.ArgumentParser(description="Generate a development access token")
    parser.add_argument("--email", required=True, help="Email claim of the token")
    parser.add_argument("--name", help="Display name stored in user_metadata")
    parser.add_argument("--hours", type=int, default=24, help="Token lifetime in hours, 0 for none")

    args = parser.parse_args()

    if "@" not in args.email:
        print(f"❌ Invalid email: {args.email}")
        sys.exit(1)

    token = generate_dev_token(args.email, args.name, expires_hours=args.hours)

    print("🎯 Development token generated")
    print(token)
    print()
    print("🧪 Try it:")
    print(
        f"curl -X POST -H 'Authorization: Bearer {token}' -H 'Content-Type: application/json' "
        "-d '{\"ingredients\": \"morango, chocolate\"}' http://localhost:8000/desserts/generate"
    )


if __name__ == "__main__":
    main()
