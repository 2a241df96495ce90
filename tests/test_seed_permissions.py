from app.config.permissions_config import PERMISSION_MATRIX
from app.scripts.seed_permissions_roles import seed_permissions, seed_roles


def test_seed_is_idempotent(fake_db):
    assert seed_permissions(fake_db) == len(PERMISSION_MATRIX["permissions"])
    assert seed_roles(fake_db) == 7
    seed_permissions(fake_db)
    seed_roles(fake_db)

    assert len(fake_db.rows("permissions")) == len(PERMISSION_MATRIX["permissions"])
    roles = {r["name"]: r for r in fake_db.rows("roles")}
    assert len(roles) == 7
    assert roles["manager"]["level"] == 4
    assert "inventory:manage" in roles["admin"]["permissions"]


def test_role_failures_are_counted(fake_db):
    fake_db.fail("roles", "upsert", lambda payload: "denied" if payload["name"] == "sales" else None)
    assert seed_roles(fake_db) == 6
