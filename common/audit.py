import logging
import uuid

from django.db import transaction

from common.utils import to_json_compatible
from core.models import AuditLog

logger = logging.getLogger(__name__)


def _parse_uuid(value):
    if not value:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def get_request_id(request):
    if request is None:
        return None
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def actor_label(actor):
    if actor is None or not getattr(actor, "is_authenticated", False):
        return "system"
    full_name = actor.get_full_name() if hasattr(actor, "get_full_name") else ""
    return full_name or actor.get_username()


def create_audit_log(
    *,
    actor=None,
    terminal=None,
    action,
    entity,
    entity_id=None,
    detail=None,
    event_id=None,
    request_id=None,
):
    return AuditLog.objects.create(
        actor=actor if getattr(actor, "is_authenticated", False) else None,
        actor_label=actor_label(actor),
        actor_role=getattr(actor, "role", "") or "",
        terminal=terminal,
        action=action,
        entity=entity,
        entity_id=_parse_uuid(entity_id),
        detail=to_json_compatible(detail),
        event_id=_parse_uuid(event_id),
        request_id=request_id,
    )


def emit(action, actor, detail, *, entity, entity_id=None, terminal=None, event_id=None, request=None):
    """Best-effort write to the audit trail.

    Runs in its own savepoint so a failing insert leaves the caller's
    transaction usable. Failures are logged and never propagate.
    """
    try:
        with transaction.atomic():
            return create_audit_log(
                actor=actor,
                terminal=terminal,
                action=action,
                entity=entity,
                entity_id=entity_id,
                detail=detail,
                event_id=event_id,
                request_id=get_request_id(request),
            )
    except Exception:
        logger.exception(
            "audit_emit_failed",
            extra={
                "action": action,
                "shift_id": str(entity_id) if entity == "shift" and entity_id else None,
                "request_id": get_request_id(request),
            },
        )
        return None
