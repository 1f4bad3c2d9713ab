"""
Audit logging for login attempts, access denials and inventory changes.

Entries are JSON lines on the ``audit`` logger so they can be shipped
separately from the application log. Verification codes are never logged.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional, Dict

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for security and inventory events."""

    @staticmethod
    def log_codes_sent(bot_code: str, recipients: list, success: bool, reason: str = ""):
        """
        Log a login-code dispatch.

        Usage:
            AuditLog.log_codes_sent("web-42", ["alice", "bob"], True)
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": "auth.codes_sent",
            "bot_code": bot_code,
            "recipients": recipients,
            "success": success,
        }
        if reason and not success:
            log_entry["reason"] = reason

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_code_verification(bot_code: str, success: bool, ip_address: str = ""):
        log_entry = {
            "timestamp": _now(),
            "event_type": "auth.code_verification",
            "bot_code": bot_code,
            "ip_address": ip_address,
            "success": success,
        }
        if success:
            audit_logger.info(json.dumps(log_entry))
        else:
            audit_logger.warning(json.dumps(log_entry))

    @staticmethod
    def log_access_denied(chat_id, event: str):
        """
        Log an event from a chat outside the allow-list.

        The chat itself gets no reply; this entry is the only trace.
        """
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "access_denied",
            "chat_id": str(chat_id),
            "event": event,
        }
        audit_logger.warning(json.dumps(log_entry))

    @staticmethod
    def log_action(
        action: str,  # "create", "update", "add_stock", "transfer", "sale", "screenshot"
        resource_type: str,  # "product", "screenshot", "purchase"
        resource_id: str,
        chat_id=None,
        changes: Optional[Dict[str, Any]] = None,
    ):
        """
        Log an inventory-changing action.

        Usage:
            AuditLog.log_action("add_stock", "product", key, chat_id, changes={"amountInStore": 12})
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"{resource_type}.{action}",
            "resource_id": resource_id,
        }
        if chat_id is not None:
            log_entry["chat_id"] = str(chat_id)
        if changes:
            log_entry["changes"] = changes

        audit_logger.info(json.dumps(log_entry, default=str))
