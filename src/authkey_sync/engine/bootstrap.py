"""Subscription bootstrap - the authorized-key sync service.

Registers the batch processor as the apply-only change handler of the
watched subtree and replays the current configuration when the governing
feature is already enabled. Batches and feature toggles are serialized on
one lock, so no two of them reconcile against the store at the same time.
"""
import asyncio
import logging
from typing import Optional

from ..config.settings import SyncSettings
from ..datastore.base import ChangeBatch, ConfigDatastore, NotificationPhase, Subscription
from ..errors import BootstrapError, DatastoreError
from ..store.base import CredentialStore
from ..utils.logging_config import timed, timed_section
from .path import PathDecoder, authorized_key_selector, watched_subtree
from .processor import BatchProcessor
from .reconciler import KeyReconciler
from .resync import BulkResynchronizer
from .schema import SyncResult

logger = logging.getLogger(__name__)


class AuthorizedKeySync:
    """
    Keeps a credential store in step with the authorized-key configuration.

    Usage:
        sync = AuthorizedKeySync(datastore, store)
        await sync.start()
        ...
        await sync.stop()
    """

    def __init__(
        self,
        datastore: ConfigDatastore,
        store: CredentialStore,
        settings: Optional[SyncSettings] = None,
    ):
        """
        Initialize the service.

        Args:
            datastore: Configuration datastore to subscribe to
            store: Credential store to reconcile
            settings: Service settings (defaults apply when omitted)
        """
        self.settings = settings or SyncSettings()
        self.datastore = datastore
        self.store = store

        root = self.settings.system_root
        self.subtree = watched_subtree(root)
        self.selector = authorized_key_selector(root)

        self.decoder = PathDecoder(root)
        self.reconciler = KeyReconciler(store, datastore, root)
        self.processor = BatchProcessor(self.decoder, self.reconciler)
        self.resynchronizer = BulkResynchronizer(
            datastore,
            store,
            self.processor,
            feature_name=self.settings.feature_name,
            system_root=root,
        )

        self._lock = asyncio.Lock()
        self._subscription: Optional[Subscription] = None

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    async def start(self) -> Optional[SyncResult]:
        """
        Subscribe and apply the current configuration.

        Returns:
            The initial resync result, or None when the feature is disabled

        Raises:
            BootstrapError: If subscribing or the initial resync fails
        """
        try:
            async with timed_section("subscribe", subtree=self.subtree):
                self._subscription = await self.datastore.subscribe(
                    self.subtree, self.handle_changes, apply_only=True
                )
        except DatastoreError as e:
            logger.error(f'Failed to subscribe to "{self.subtree}" subtree changes ({e}).')
            raise BootstrapError(f"Subscription failed: {e}") from e

        logger.info(f'Subscribed to "{self.subtree}" (apply-only)')

        feature = self.settings.feature_name
        if not self.datastore.is_feature_enabled(feature):
            return None

        result = await self.apply_feature_state(feature, True)
        if not result.success:
            await self.stop()
            raise BootstrapError(f"Initial resync failed: {result.error}")
        return result

    async def stop(self) -> None:
        """Remove the change subscription."""
        if self._subscription is None:
            return
        await self.datastore.unsubscribe(self._subscription)
        self._subscription = None
        logger.info(f'Unsubscribed from "{self.subtree}"')

    @timed("batch")
    async def handle_changes(self, batch: ChangeBatch) -> SyncResult:
        """Change handler registered with the datastore, one call per commit."""
        if batch.phase != NotificationPhase.APPLY:
            logger.error(f"Unexpected {batch.phase.value} notification for an apply-only subscription")
            return SyncResult(
                error=f"Unexpected notification phase: {batch.phase.value}",
                error_kind="internal",
            )

        async with self._lock:
            return await self.processor.process(batch.changes(self.selector))

    async def apply_feature_state(self, feature_name: str, enabled: bool) -> SyncResult:
        """Apply a feature toggle (resync when enabled, wipe when disabled)."""
        async with self._lock:
            return await self.resynchronizer.apply_feature_state(feature_name, enabled)
