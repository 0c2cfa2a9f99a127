#!/usr/bin/env python3
"""
User Provisioning Script

Creates users (and optionally an active subscription) directly in Redis so
the pipeline has recipients to resolve in development and staging.

Usage:
    python scripts/provision_users.py users.json

    Or with inline data:
    python scripts/provision_users.py --inline '[{"email": "user@example.com"}]'

Input Format (JSON):
[
    {
        "email": "user1@example.com",
        "role": "user",                  // Optional, "user" or "admin"
        "notifications_opt_in": true,    // Optional, defaults to true
        "subscription_days": 30          // Optional, creates an active subscription
    },
    {
        "email": "admin@example.com",
        "role": "admin"
    }
]

Run ``POST /api/admin/notifications/reconcile`` afterwards (or pass
``--reconcile``) to derive each user's notification flag.
"""
import argparse
import asyncio
import json
import sys
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional

# Add parent directory to path to import athwatch modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from athwatch.core.auth import create_access_token
from athwatch.core.config import settings
from athwatch.core.redis import close_redis, get_redis
from athwatch.models import Subscription, SubscriptionStatus, User, UserRole
from athwatch.services import EligibilityResolver, SubscriptionService, UserService
from athwatch.utils.time import utcnow


async def create_user(r, user_data: Dict) -> Optional[User]:
    """
    Create a user and, when ``subscription_days`` is given, an active subscription.

    Returns:
        Created User, or None if the email already exists
    """
    email = user_data["email"]
    existing = [u for u in await UserService.get_all_users(r) if u.email == email]
    if existing:
        print(f"⚠️  User {email} already exists (ID: {existing[0].id})")
        return None

    now = utcnow()
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        role=UserRole(user_data.get("role", "user")),
        notifications_opt_in=user_data.get("notifications_opt_in", True),
        created_at=now
    )
    await UserService.save_user(r, user)

    days = user_data.get("subscription_days")
    if days:
        await SubscriptionService.save_subscription(r, Subscription(
            id=str(uuid.uuid4()),
            user_id=user.id,
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            end_date=now + timedelta(days=int(days))
        ))
    return user


async def provision_users(r, users_data: List[Dict], reconcile: bool = False) -> Dict[str, int]:
    """
    Provision multiple users from a list of user data.

    Returns:
        Counts of created and skipped entries
    """
    created_count = 0
    skipped_count = 0

    for user_data in users_data:
        if not user_data.get("email"):
            print("❌ Skipping user: email is required")
            skipped_count += 1
            continue

        try:
            user = await create_user(r, user_data)
        except ValueError as e:
            print(f"❌ Error creating user {user_data['email']}: {e}")
            skipped_count += 1
            continue

        if user is None:
            skipped_count += 1
            continue

        created_count += 1
        print(f"✅ Created user: {user.email}")
        print(f"   User ID: {user.id}")
        if user.is_admin and settings.jwt_secret:
            token = create_access_token({"sub": user.id, "role": "admin"})
            print(f"   Admin token: {token}")

    if reconcile:
        result = await EligibilityResolver(r).reconcile_preferences()
        print(f"🔄 Reconciled notification flags: {result.changed} changed")

    print("\n" + "=" * 60)
    print("Summary:")
    print(f"  ✅ Created: {created_count}")
    print(f"  ⚠️  Skipped: {skipped_count}")
    print(f"  📊 Total: {len(users_data)}")
    print("=" * 60)
    return {"created": created_count, "skipped": skipped_count}


async def _run(users_data: List[Dict], reconcile: bool):
    try:
        await provision_users(await get_redis(), users_data, reconcile=reconcile)
    finally:
        await close_redis()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Provision users in Redis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # From a JSON file
  python scripts/provision_users.py users.json --reconcile

  # Inline JSON
  python scripts/provision_users.py --inline '[{"email": "test@example.com", "subscription_days": 30}]'
        """
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "file",
        nargs="?",
        help="Path to JSON file containing user data"
    )
    group.add_argument(
        "--inline",
        help="Inline JSON string containing user data"
    )
    parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Derive notification flags after provisioning"
    )

    args = parser.parse_args()

    try:
        if args.inline:
            users_data = json.loads(args.inline)
        else:
            with open(args.file, 'r') as f:
                users_data = json.load(f)

        if not isinstance(users_data, list):
            print("❌ Error: User data must be a JSON array")
            sys.exit(1)

    except json.JSONDecodeError as e:
        print(f"❌ Error parsing JSON: {e}")
        sys.exit(1)
    except FileNotFoundError:
        print(f"❌ Error: File not found: {args.file}")
        sys.exit(1)

    print("🚀 Starting user provisioning...")
    print("=" * 60)
    asyncio.run(_run(users_data, args.reconcile))


if __name__ == "__main__":
    main()
