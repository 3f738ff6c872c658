"""
Clerk identity lifecycle synchronisation.

Maps verified Clerk webhook events onto local user records:
- user.created / user.updated: upsert keyed by Clerk id, falling back to the
  primary e-mail so a pre-existing row gets linked instead of duplicated
- user.deleted: remove the local record; unknown ids are a no-op
"""
import logging
import re
from typing import Any, Dict, Optional, Tuple
from sqlalchemy.orm import Session
from core.audit_logger import audit_logger
from db.models import User
from db.repository import Repository

logger = logging.getLogger(__name__)

USER_UPSERT_EVENTS = ("user.created", "user.updated")
USER_DELETE_EVENT = "user.deleted"

_USERNAME_STRIP = re.compile(r"[^A-Za-z0-9_.-]")


class InvalidIdentityEvent(ValueError):
    """The event payload lacks the fields needed to sync a user."""


def primary_email(data: Dict[str, Any]) -> Optional[str]:
    """Pick the primary e-mail address of a Clerk user object (or the first one)."""
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    for address in addresses:
        if address.get("id") == primary_id and address.get("email_address"):
            return address["email_address"]
    for address in addresses:
        if address.get("email_address"):
            return address["email_address"]
    return None


class IdentitySyncService:
    """Applies Clerk user lifecycle events to the users table."""

    def __init__(self, db: Session):
        self.repository = Repository(db)

    def handle_event(self, event: Dict[str, Any]) -> str:
        """
        Dispatch one verified webhook event.

        Returns:
            Short outcome label: "created", "updated", "deleted", "noop" or "ignored"

        Raises:
            InvalidIdentityEvent: payload misses the Clerk id or e-mail
        """
        event_type = event.get("type")
        data = event.get("data") or {}

        if event_type in USER_UPSERT_EVENTS:
            _, created = self.upsert_user(data)
            return "created" if created else "updated"
        if event_type == USER_DELETE_EVENT:
            return "deleted" if self.delete_user(data) else "noop"

        logger.info(f"Ignoring Clerk event type {event_type}")
        return "ignored"

    def upsert_user(self, data: Dict[str, Any]) -> Tuple[User, bool]:
        """
        Create or update the local user for a Clerk user object.

        Returns:
            (user, created) where created is True only for a new row
        """
        clerk_id = data.get("id")
        email = primary_email(data)
        if not clerk_id or not email:
            raise InvalidIdentityEvent("Clerk user payload requires id and an e-mail address")

        profile = {
            "first_name": data.get("first_name"),
            "last_name": data.get("last_name"),
            "avatar": data.get("image_url") or data.get("profile_image_url"),
        }

        user = self.repository.get_user_by_clerk_id(clerk_id) or self.repository.get_user_by_email(email)
        if user:
            fields = dict(profile, clerk_id=clerk_id, email=email)
            requested = data.get("username")
            if requested and requested != user.username:
                fields["username"] = self._available_username(requested, exclude_user_id=user.id)
            user = self.repository.update_user(user, fields)
            audit_logger.log_user_synced(clerk_id, user.id, created=False)
            logger.info(f"Synced Clerk user {clerk_id} onto local user {user.id}")
            return user, False

        username = self._available_username(data.get("username") or email.split("@")[0])
        user = self.repository.create_user(email=email, username=username, clerk_id=clerk_id, **profile)
        audit_logger.log_user_synced(clerk_id, user.id, created=True)
        logger.info(f"Created local user {user.id} for Clerk user {clerk_id}")
        return user, True

    def delete_user(self, data: Dict[str, Any]) -> bool:
        """Delete the local user for a Clerk id. Returns False when none existed."""
        clerk_id = data.get("id")
        if not clerk_id:
            raise InvalidIdentityEvent("Clerk deletion payload requires id")

        user = self.repository.get_user_by_clerk_id(clerk_id)
        if not user:
            logger.info(f"Clerk user {clerk_id} deleted but has no local record")
            audit_logger.log_user_deleted(clerk_id, found=False)
            return False

        self.repository.delete_user(user)
        audit_logger.log_user_deleted(clerk_id, found=True)
        logger.info(f"Deleted local user for Clerk user {clerk_id}")
        return True

    def _available_username(self, candidate: str, exclude_user_id: Optional[int] = None) -> str:
        base = _USERNAME_STRIP.sub("", candidate)[:40] or "user"
        username = base
        suffix = 1
        while True:
            existing = self.repository.get_user_by_username(username)
            if existing is None or existing.id == exclude_user_id:
                return username
            suffix += 1
            username = f"{base}{suffix}"
