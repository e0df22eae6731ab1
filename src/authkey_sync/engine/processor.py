"""Batch processor.

Feeds the events of one commit, in delivery order, through the classifier,
the path decoder and the reconciler. Algorithm changes deferred by the
reconciler are re-registered once every event has been seen. Processing
stops at the first failure. Events reconciled before the failure stay
applied: the credential store has no transactions to roll back.
"""
import logging
from typing import AsyncIterable, AsyncIterator, Iterable, Union

from ..datastore.base import ChangeEvent, ChangeOperation
from ..errors import ReconcileError
from .classifier import classify
from .path import PathDecoder, encode_key_path
from .reconciler import KeyReconciler
from .schema import Classification, KeyLeaf, PendingAlgorithms, SyncResult

logger = logging.getLogger(__name__)

EventSource = Union[Iterable[ChangeEvent], AsyncIterable[ChangeEvent]]


async def _iterate(events: EventSource) -> AsyncIterator[ChangeEvent]:
    """Iterate over a sync or async event source."""
    if hasattr(events, "__aiter__"):
        async for event in events:
            yield event
    else:
        for event in events:
            yield event


class BatchProcessor:
    """Process a sequence of change events, fail-fast."""

    def __init__(self, decoder: PathDecoder, reconciler: KeyReconciler):
        self.decoder = decoder
        self.reconciler = reconciler

    async def process(self, events: EventSource, operation: str = "batch") -> SyncResult:
        """
        Reconcile events in order with a fresh PendingAlgorithms.

        Args:
            events: Change events of one commit (or a synthetic walk)
            operation: Result label ("batch" or "resync")

        Returns:
            SyncResult; on failure it names the failing path and error kind
        """
        result = SyncResult(operation=operation)
        pending = PendingAlgorithms()
        current_path = None

        try:
            async for event in _iterate(events):
                current_path = event.path
                result.events_seen += 1

                if classify(event) == Classification.SKIP:
                    result.events_skipped += 1
                    continue

                if event.operation == ChangeOperation.MOVED:
                    # Authorized keys carry no order in the store
                    logger.debug(f'Ignoring reorder of "{event.path}"')
                    result.events_skipped += 1
                    continue

                path = self.decoder.decode(event.path)
                changes = await self.reconciler.reconcile(path, event, pending)

                result.events_processed += 1
                result.changes_made.extend(changes)
                current_path = None

            for entry, algorithm, previous in pending.drain_rekeys():
                current_path = encode_key_path(*entry, KeyLeaf.ALGORITHM, self.decoder.system_root)
                result.changes_made.extend(await self.reconciler.rekey(entry, algorithm, previous))
                current_path = None

        except ReconcileError as e:
            logger.error(f"{operation.capitalize()} aborted at \"{current_path}\": {e}")
            result.success = False
            result.error = str(e)
            result.error_kind = e.kind
            result.failed_path = current_path
            result.validation_failure = e.validation
            return result

        finally:
            if len(pending):
                logger.debug(f"Discarding {len(pending)} unpaired algorithm(s)")
            pending.clear()

        result.success = True
        logger.info(
            f"{operation.capitalize()} done: {result.events_processed} processed, "
            f"{result.events_skipped} skipped, {len(result.changes_made)} store changes"
        )
        return result
