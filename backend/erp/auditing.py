# Overview: Audit mirror primitives: opt-in registration, attribute filtering, redaction and diffing.

"""
Audit Mirror Primitives

Models opt in to audit logging with the @auditable class decorator. The
decorator only records options in a registry; it adds no base class and no
instance state. The audit service reads the registry at its lifecycle hooks
(post-create, post-update-with-diff, pre-delete).

INVARIANTS:
- Excluded attributes never appear in an entry
- Sensitive attributes always appear as REDACTED, never with their value
- An update with an empty filtered diff produces no entry
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect

from .time_utils import to_utc_z


REDACTED = "[REDACTED]"

DEFAULT_EXCLUDE = frozenset({"updated_at", "remember_token", "version_id"})

SENSITIVE_FIELDS = (
    "password",
    "password_hash",
    "secret",
    "api_key",
    "token",
    "credit_card",
    "cvv",
)

# Tried in order when a model declares no reference field
REFERENCE_FIELDS = (
    "order_number",
    "invoice_number",
    "customer_code",
    "code",
    "sku",
    "name",
)


@dataclass(frozen=True)
class AuditOptions:
    exclude: frozenset[str]
    reference_field: str | None
    display_name: str


_REGISTRY: dict[type, AuditOptions] = {}


def auditable(cls=None, *, exclude=(), reference: str | None = None, display_name: str | None = None):
    """
    Register a model class with the audit mirror.

    Usage:
        @auditable(exclude=["last_login_at"], reference="order_number")
        class SalesOrder(db.Model): ...
    """
    def register(model_cls):
        _REGISTRY[model_cls] = AuditOptions(
            exclude=DEFAULT_EXCLUDE | frozenset(exclude),
            reference_field=reference,
            display_name=display_name or model_cls.__name__,
        )
        return model_cls

    if cls is not None:
        return register(cls)
    return register


def audit_options(entity_or_cls) -> AuditOptions | None:
    cls = entity_or_cls if isinstance(entity_or_cls, type) else type(entity_or_cls)
    for klass in cls.__mro__:
        if klass in _REGISTRY:
            return _REGISTRY[klass]
    return None


def is_sensitive_attribute(key: str) -> bool:
    lowered = key.lower()
    return any(field in lowered for field in SENSITIVE_FIELDS)


def serialize_value(value: Any) -> Any:
    """Coerce a column value into something JSON can store."""
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def filter_auditable_attributes(attributes: dict[str, Any], exclude=DEFAULT_EXCLUDE) -> dict[str, Any]:
    """Drop excluded keys and redact sensitive ones."""
    filtered = {}
    for key, value in attributes.items():
        if key in exclude:
            continue
        if is_sensitive_attribute(key):
            filtered[key] = REDACTED
        else:
            filtered[key] = serialize_value(value)
    return filtered


def changed_attributes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude=DEFAULT_EXCLUDE,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Compute the (old_values, new_values) pair for an update.

    Only keys whose value actually changed are kept; both dicts are empty
    when nothing auditable changed.
    """
    dirty = [key for key in new if key not in old or old[key] != new[key]]
    old_values = filter_auditable_attributes({k: old.get(k) for k in dirty}, exclude)
    new_values = filter_auditable_attributes({k: new[k] for k in dirty}, exclude)
    return old_values, new_values


def snapshot(entity) -> dict[str, Any]:
    """Current column values of a mapped instance, keyed by attribute name."""
    mapper = inspect(entity).mapper
    return {attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs}


def audit_reference(entity, options: AuditOptions | None = None) -> str | None:
    options = options or audit_options(entity)
    if options and options.reference_field:
        value = getattr(entity, options.reference_field, None)
        if value is not None:
            return str(value)

    for field in REFERENCE_FIELDS:
        value = getattr(entity, field, None)
        if value:
            return str(value)

    entity_id = getattr(entity, "id", None)
    return str(entity_id) if entity_id is not None else None
