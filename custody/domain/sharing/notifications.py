"""Owner notification payloads for share-code activity."""
from datetime import datetime
from typing import Any, Dict, Optional

from custody.domain.models import AccessAction


def _notification(
    owner_user_id: str,
    kind: str,
    title: str,
    message: str,
    action_url: str,
    action_label: str,
    **extra: Any,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "owner_user_id": owner_user_id,
        "type": kind,
        "title": title,
        "message": message,
        "action_url": action_url,
        "action_label": action_label,
    }
    payload.update(extra)
    return payload


def document_access_notice(
    owner_user_id: str,
    document_name: str,
    share_code_name: str,
    action: AccessAction,
    suspicious: bool = False,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    verb = "downloaded" if action == AccessAction.DOWNLOAD else "viewed"
    message = f'{document_name} was {verb} via share code "{share_code_name}".'
    title = "Document Accessed"
    kind = "info"
    if suspicious:
        title = "Suspicious Document Access"
        kind = "warning"
        if reason:
            message = f"{message} {reason}"
    return _notification(
        owner_user_id,
        kind,
        title,
        message,
        "/vault/logs",
        "View Logs",
        document_name=document_name,
        share_code_name=share_code_name,
        action=action.value,
        suspicious=suspicious,
    )


def share_code_expiring_notice(owner_user_id: str, code_name: str, expires_at: datetime) -> Dict[str, Any]:
    return _notification(
        owner_user_id,
        "warning",
        "Share Code Expiring Soon",
        f'Share code "{code_name}" will expire in 1 day. Consider creating a new code if needed.',
        "/vault/sharing",
        "Manage Codes",
        share_code_name=code_name,
        expires_at=expires_at.isoformat(),
    )


def share_code_expired_notice(owner_user_id: str, code_name: str) -> Dict[str, Any]:
    return _notification(
        owner_user_id,
        "warning",
        "Share Code Expired",
        f'Share code "{code_name}" has expired. Third parties can no longer access documents using this code.',
        "/vault/sharing",
        "Manage Codes",
        share_code_name=code_name,
    )
