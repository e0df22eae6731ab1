"""Configuration datastore interface and the in-memory implementation."""
from .base import (
    ConfigDatastore,
    ChangeBatch,
    ChangeEvent,
    ChangeOperation,
    ChangeHandler,
    NotificationPhase,
    Subscription,
    TypedValue,
    ValueType,
    schema_path,
    selector_matches,
)

__all__ = [
    "ConfigDatastore",
    "ChangeBatch",
    "ChangeEvent",
    "ChangeOperation",
    "ChangeHandler",
    "NotificationPhase",
    "Subscription",
    "TypedValue",
    "ValueType",
    "schema_path",
    "selector_matches",
]
