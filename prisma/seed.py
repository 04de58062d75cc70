#!/usr/bin/env python3
import asyncio
import sys
from pathlib import Path

# Add the project root to Python path so we can import from src
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from prisma import Prisma
from src.shared.permissions.models import (
    DEFAULT_PERMISSIONS,
    ROLE_DESCRIPTIONS,
    ROLE_LEVELS,
    ROLE_PERMISSIONS,
    PermissionString,
)


async def seed_roles(prisma: Prisma) -> dict[str, str]:
    """Upsert the built-in roles, returning role name -> id."""
    print("👥 Seeding roles...")
    role_ids: dict[str, str] = {}

    for role_name, level in ROLE_LEVELS.items():
        role = await prisma.role.upsert(
            where={"name": role_name.value},
            data={
                "create": {
                    "name": role_name.value,
                    "description": ROLE_DESCRIPTIONS[role_name],
                    "level": level,
                },
                "update": {},
            },
        )
        role_ids[role.name] = role.id

    print(f"✅ Roles ready: {', '.join(role_ids)}")
    return role_ids


async def seed_permissions(prisma: Prisma) -> dict[str, str]:
    """Upsert the permission catalogue, returning ``resource:action`` -> id."""
    print("🔐 Seeding permissions...")
    permission_ids: dict[str, str] = {}

    for resource, action, description in DEFAULT_PERMISSIONS:
        permission = await prisma.permission.upsert(
            where={"resource_action": {"resource": resource, "action": action}},
            data={
                "create": {
                    "resource": resource,
                    "action": action,
                    "description": description,
                },
                "update": {},
            },
        )
        permission_ids[f"{resource}:{action}"] = permission.id

    print(f"✅ {len(permission_ids)} permissions ready")
    return permission_ids


async def seed_role_permissions(
    prisma: Prisma, role_ids: dict[str, str], permission_ids: dict[str, str]
) -> int:
    """Grant each role its default permissions, skipping existing grants."""
    print("🔗 Granting role permissions...")
    granted = 0

    for role_name, permissions in ROLE_PERMISSIONS.items():
        role_id = role_ids[role_name.value]
        for permission in sorted(permissions):
            permission_id = permission_ids[str(PermissionString.parse(permission))]
            existing = await prisma.rolepermission.find_unique(
                where={
                    "roleId_permissionId": {
                        "roleId": role_id,
                        "permissionId": permission_id,
                    }
                }
            )
            if existing:
                continue

            await prisma.rolepermission.create(
                data={"roleId": role_id, "permissionId": permission_id}
            )
            granted += 1

    print(f"✅ Granted {granted} new role permissions")
    return granted


async def main():
    print("🌱 Starting RBAC seed...")

    prisma = Prisma()
    await prisma.connect()

    try:
        role_ids = await seed_roles(prisma)
        permission_ids = await seed_permissions(prisma)
        await seed_role_permissions(prisma, role_ids, permission_ids)
        print("🎉 Seed completed")
    finally:
        await prisma.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
