"""
Seed Permissions and Roles Script
Upserts the permissions and roles tables from app.config.permissions_config.
Run with: python -m app.scripts.seed_permissions_roles
"""

import sys
import logging
from supabase import Client

from app.config.permissions_config import PERMISSION_MATRIX
from app.database.supabase_client import get_service_supabase

logger = logging.getLogger(__name__)


def seed_permissions(supabase: Client) -> int:
    """Upsert the permission catalogue keyed by name"""
    permissions = PERMISSION_MATRIX["permissions"]
    supabase.table("permissions").upsert(
        [
            {
                "name": perm["name"],
                "resource": perm["resource"],
                "action": perm["action"],
                "description": perm["description"]
            }
            for perm in permissions
        ],
        on_conflict="name"
    ).execute()
    logger.info(f"Permissions seeded: {len(permissions)}")
    return len(permissions)


def seed_roles(supabase: Client) -> int:
    """Upsert each role with its level and effective permission list"""
    seeded = 0
    for role in PERMISSION_MATRIX["roles"]:
        try:
            supabase.table("roles").upsert({
                "name": role["name"],
                "level": role["level"],
                "display_name": role["description"],
                "permissions": role["permissions"]
            }, on_conflict="name").execute()
            seeded += 1
        except Exception as e:
            logger.error(f"Error seeding role {role['name']}: {e}")
    logger.info(f"Roles seeded: {seeded} of {len(PERMISSION_MATRIX['roles'])}")
    return seeded


def main():
    logging.basicConfig(level=logging.INFO)
    try:
        supabase = get_service_supabase()
        perm_count = seed_permissions(supabase)
        role_count = seed_roles(supabase)
        logger.info(f"Seeding completed: {perm_count} permissions, {role_count} roles")
    except Exception as e:
        logger.error(f"Error during seeding: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
