"""Event classifier.

The datastore reports list and container boundary events alongside leaf
events. Only leaf events map to credential operations.
"""
from ..datastore.base import ChangeEvent, ChangeOperation, ValueType
from .schema import Classification


def classify(event: ChangeEvent) -> Classification:
    """Return SKIP for structural events, PROCESS otherwise."""
    for value in event.values():
        if value.type == ValueType.CONTAINER:
            return Classification.SKIP
        if value.type == ValueType.LIST and event.operation != ChangeOperation.MOVED:
            return Classification.SKIP
    return Classification.PROCESS
