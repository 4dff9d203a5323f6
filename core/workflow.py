"""Status transition enforcement shared by every document type.

Document models declare ``TRANSITIONS`` as ``{action: (allowed_sources, target)}``.
Views call :func:`transition` from their action endpoints; nothing else is
allowed to write a workflow status. Documents with a second state field (invoice
approval) pass their own table and field name.
"""

import logging

from django.utils import timezone

from common.exceptions import InvalidTransition

logger = logging.getLogger("erp.workflow")


def _label(document):
    return document._meta.verbose_name


def log_transition(document, action, previous, target):
    logger.info(
        "document_transition",
        extra={
            "document": document._meta.model_name,
            "document_id": str(document.pk),
            "document_number": getattr(document, "number", None),
            "action": action,
            "from_status": previous,
            "to_status": target,
        },
    )


def ensure_transition(document, action, *, field="status", transitions=None):
    """Return the target state for ``action`` or raise if the current state forbids it."""
    transitions = document.TRANSITIONS if transitions is None else transitions
    if action not in transitions:
        raise InvalidTransition(f"Unknown action '{action}' for {_label(document)}.")

    sources, target = transitions[action]
    current = getattr(document, field)
    if current not in sources:
        allowed = ", ".join(sorted(str(source) for source in sources))
        raise InvalidTransition(
            f"Cannot {action} {_label(document)} in {field.replace('_', ' ')} '{current}'. Allowed from: {allowed}."
        )
    return target


def transition(document, action, *, actor=None, stamps=(), extra_fields=(), field="status", transitions=None):
    """Move ``document`` along ``action`` and persist the state change.

    ``stamps`` names ``(user_field, time_field)`` pairs filled with ``actor`` and now.
    ``extra_fields`` lists other attributes the caller already set and wants saved.
    """
    target = ensure_transition(document, action, field=field, transitions=transitions)
    previous = getattr(document, field)
    setattr(document, field, target)

    update_fields = [field, "updated_at", *extra_fields]
    now = timezone.now()
    for user_field, time_field in stamps:
        if user_field:
            setattr(document, user_field, actor)
            update_fields.append(user_field)
        if time_field:
            setattr(document, time_field, now)
            update_fields.append(time_field)

    document.save(update_fields=update_fields)
    log_transition(document, action, previous, target)
    return document


def ensure_status_change(document, new_status, table):
    """Validate a free-form status update against an explicit ``{source: {targets}}`` table."""
    allowed = table.get(document.status, set())
    if new_status not in allowed:
        targets = ", ".join(sorted(str(status) for status in allowed)) or "none"
        raise InvalidTransition(
            f"Cannot change {_label(document)} status from '{document.status}' to '{new_status}'. Allowed: {targets}."
        )
    return new_status


def change_status(document, new_status, table, *, extra_fields=()):
    ensure_status_change(document, new_status, table)
    previous = document.status
    document.status = new_status
    document.save(update_fields=["status", "updated_at", *extra_fields])
    log_transition(document, "update_status", previous, new_status)
    return document
