"""
Audit logging for security events.
Records session-token failures, webhook signature failures, identity sync
results and relay authorization denials.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from enum import Enum

from core.logging_config import request_id_var

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of security audit events."""
    # Authentication events
    TOKEN_INVALID = "token_invalid"
    UNKNOWN_IDENTITY = "unknown_identity"

    # Authorization events
    AUTHZ_DENIED = "authorization_denied"

    # Identity provider events
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    USER_SYNCED = "user_synced"
    USER_DELETED = "user_deleted"


class AuditLogger:
    """
    Security audit logger.

    Every entry carries timestamp, event type, user identifier, source
    address, request id and free-form metadata.
    """

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> None:
        audit_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "success": success,
            "user_id": user_id,
            "ip_address": ip_address,
            "request_id": request_id_var.get(),
            "metadata": metadata or {},
            "error_message": error_message
        }

        log_level = logging.INFO if success else logging.WARNING
        if event_type == AuditEventType.WEBHOOK_SIGNATURE_INVALID:
            log_level = logging.ERROR

        logger.log(
            log_level,
            f"AUDIT: {event_type.value} | user={user_id} | ip={ip_address} | "
            f"success={success} | {json.dumps(audit_entry, default=str)}"
        )

    @staticmethod
    def log_token_invalid(ip_address: Optional[str], reason: str, channel: str = "http") -> None:
        """Log a rejected session token."""
        AuditLogger.log_event(
            event_type=AuditEventType.TOKEN_INVALID,
            ip_address=ip_address,
            success=False,
            metadata={"channel": channel},
            error_message=reason
        )

    @staticmethod
    def log_unknown_identity(clerk_id: str, ip_address: Optional[str], channel: str = "http") -> None:
        """Log a valid token whose subject has no local user record."""
        AuditLogger.log_event(
            event_type=AuditEventType.UNKNOWN_IDENTITY,
            user_id=clerk_id,
            ip_address=ip_address,
            success=False,
            metadata={"channel": channel},
            error_message="No local user for session subject"
        )

    @staticmethod
    def log_authorization_denied(
        user_id: Any,
        resource: str,
        action: str,
        reason: str,
        ip_address: Optional[str] = None
    ) -> None:
        """Log authorization denial."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTHZ_DENIED,
            user_id=str(user_id),
            ip_address=ip_address,
            success=False,
            metadata={"resource": resource, "action": action},
            error_message=reason
        )

    @staticmethod
    def log_webhook_signature_invalid(ip_address: Optional[str], reason: str) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.WEBHOOK_SIGNATURE_INVALID,
            ip_address=ip_address,
            success=False,
            error_message=reason
        )

    @staticmethod
    def log_user_synced(clerk_id: str, user_id: int, created: bool) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.USER_SYNCED,
            user_id=clerk_id,
            metadata={"local_user_id": user_id, "created": created}
        )

    @staticmethod
    def log_user_deleted(clerk_id: str, found: bool) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.USER_DELETED,
            user_id=clerk_id,
            metadata={"found": found}
        )


# Global audit logger instance
audit_logger = AuditLogger()
