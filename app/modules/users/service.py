import logging
import secrets
from supabase import Client
from fastapi import HTTPException
from typing import Any, Dict, Optional

from app.config import settings
from app.config.permissions_config import ROLE_HIERARCHY, normalize_role
from app.core.timeutils import utc_now_iso
from app.modules.notifications.service import NotificationService
from app.modules.notifications.templates import account_credentials_email
from app.modules.users.schemas import UserCreate, UserUpdate

logger = logging.getLogger(__name__)

PROFILE_UPDATE_FIELDS = ("name", "role", "mobile", "address", "gstin", "is_active",
                         "customer_category", "discount_percentage")


def generate_password() -> str:
    return "-".join(secrets.token_hex(2) for _ in range(3))


def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(role or "", 0)


class UserService:
    def __init__(self, supabase: Client, notifier: Optional[NotificationService] = None):
        self.supabase = supabase
        self.notifier = notifier

    def list_users(self) -> Dict[str, Any]:
        """Auth users merged with their profiles rows"""
        try:
            users = self.supabase.auth.admin.list_users()
        except Exception as e:
            logger.error(f"Error fetching auth users: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch users")
        try:
            profiles = self.supabase.table("profiles").select("*").execute()
        except Exception as e:
            logger.error(f"Error fetching profiles: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch user profiles")

        by_id = {p["id"]: p for p in profiles.data or []}
        merged = [
            {
                "id": user.id,
                "email": user.email,
                "email_confirmed_at": getattr(user, "email_confirmed_at", None),
                "last_sign_in_at": getattr(user, "last_sign_in_at", None),
                "created_at": getattr(user, "created_at", None),
                "updated_at": getattr(user, "updated_at", None),
                "banned_until": getattr(user, "banned_until", None),
                "profile": by_id.get(user.id)
            }
            for user in users
        ]
        return {"users": merged, "total": len(merged)}

    def create_user(self, data: UserCreate, actor: Dict[str, Any]) -> Dict[str, Any]:
        """Confirmed auth user plus profile; credentials are emailed best effort."""
        role = normalize_role(data.role)
        if role_level(role) >= role_level(actor.get("role")):
            raise HTTPException(status_code=403, detail="Cannot assign a role at or above your own")
        password = data.password if data.password and data.password.strip() else generate_password()
        try:
            created = self.supabase.auth.admin.create_user({
                "email": data.email,
                "password": password,
                "email_confirm": True,
                "user_metadata": {"name": data.name, "role": role}
            })
        except Exception as e:
            logger.error(f"Error creating user {data.email}: {e}")
            raise HTTPException(status_code=400, detail=str(e) or "Failed to create user")
        user = created.user

        try:
            self.supabase.table("profiles").upsert({
                "id": user.id,
                "name": data.name,
                "email": data.email,
                "role": role,
                "mobile": data.mobile,
                "is_active": True,
                "updated_at": utc_now_iso()
            }, on_conflict="id").execute()
        except Exception as e:
            logger.error(f"Error creating profile for {user.id}, removing auth user: {e}")
            try:
                self.supabase.auth.admin.delete_user(user.id)
            except Exception as cleanup_error:
                logger.error(f"Cleanup of auth user {user.id} failed: {cleanup_error}")
            raise HTTPException(status_code=500, detail="Failed to create user profile")

        if self.notifier:
            subject, html = account_credentials_email(
                data.name, data.email, password, role, f"{settings.site_url}/auth/signin"
            )
            self.notifier.notify_best_effort("email", to=data.email, subject=subject, html=html)

        logger.info(f"User {user.id} created with role {role}")
        return {
            "message": "User created successfully",
            "user": {"id": user.id, "email": user.email, "created_at": getattr(user, "created_at", None)}
        }

    def _profile_role(self, user_id: str) -> Optional[str]:
        result = self.supabase.table("profiles")\
            .select("id, role")\
            .eq("id", user_id)\
            .limit(1)\
            .execute()
        return normalize_role(result.data[0].get("role")) if result.data else None

    def update_user(self, user_id: str, updates: UserUpdate, actor: Dict[str, Any]) -> Dict[str, Any]:
        """Edit an account. Callers only edit accounts below their own level and
        only grant roles below it; nobody changes their own role here."""
        actor_level = role_level(actor.get("role"))
        is_self = user_id == actor.get("id")
        if updates.role and updates.role not in ROLE_HIERARCHY:
            raise HTTPException(status_code=400, detail="Invalid role")
        target_role = self._profile_role(user_id)
        if not is_self and role_level(target_role) >= actor_level:
            raise HTTPException(status_code=403, detail="Cannot edit a user at or above your own role")
        if updates.role and updates.role != target_role:
            if is_self:
                raise HTTPException(status_code=403, detail="Self role change not permitted")
            if role_level(updates.role) >= actor_level:
                raise HTTPException(status_code=403, detail="Cannot assign a role at or above your own")

        auth_updates = {}
        if updates.email:
            auth_updates["email"] = updates.email
        if updates.password:
            auth_updates["password"] = updates.password
        if updates.email_confirm is not None:
            auth_updates["email_confirm"] = updates.email_confirm
        if auth_updates:
            try:
                self.supabase.auth.admin.update_user_by_id(user_id, auth_updates)
            except Exception as e:
                logger.error(f"Error updating auth user {user_id}: {e}")
                raise HTTPException(status_code=400, detail=str(e) or "Failed to update user")

        profile_updates = {}
        for field in PROFILE_UPDATE_FIELDS:
            value = getattr(updates, field)
            if value is not None and value != "":
                profile_updates[field] = value
        profile_updates["updated_at"] = utc_now_iso()

        try:
            self.supabase.table("profiles")\
                .update(profile_updates)\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating profile {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update user profile")
        return {"message": "User updated successfully"}

    def delete_user(self, user_id: str, current_user_id: str) -> Dict[str, Any]:
        if user_id == current_user_id:
            raise HTTPException(status_code=400, detail="Cannot delete your own account")
        try:
            self.supabase.auth.admin.delete_user(user_id)
        except Exception as e:
            logger.error(f"Error deleting user {user_id}: {e}")
            raise HTTPException(status_code=400, detail=str(e) or "Failed to delete user")
        logger.info(f"User {user_id} deleted by {current_user_id}")
        return {"message": "User deleted successfully"}

    def set_role(self, user_id: str, new_role: str, actor_id: Optional[str], actor_role: str,
                 note: Optional[str] = None) -> Dict[str, Any]:
        if new_role not in ROLE_HIERARCHY:
            raise HTTPException(status_code=400, detail="Invalid role")
        if actor_id and actor_id == user_id and new_role != actor_role:
            raise HTTPException(status_code=400, detail="Self role change not permitted")

        result = self.supabase.table("profiles")\
            .select("id, role")\
            .eq("id", user_id)\
            .limit(1)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="Target user profile not found")

        try:
            self.supabase.table("profiles")\
                .update({"role": new_role, "updated_at": utc_now_iso()})\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.error(f"Role update for {user_id} failed: {e}")
            raise HTTPException(status_code=500, detail="Role update failed")

        logger.info(
            f"Role of {user_id} changed {result.data[0].get('role')} -> {new_role} by {actor_id or 'maintenance token'}"
            + (f" ({note})" if note else "")
        )
        return {"success": True, "userId": user_id, "newRole": new_role}

