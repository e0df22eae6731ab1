"""Bulk resynchronization on feature toggles.

Enabling the governed feature replays the whole current authorized-key
subtree as synthetic "created" events. Disabling it wipes the credential
store.
"""
import logging
from typing import AsyncIterator

from ..config.settings import DEFAULT_FEATURE, DEFAULT_SYSTEM_ROOT
from ..datastore.base import ChangeEvent, ChangeOperation, ConfigDatastore
from ..errors import StoreError
from ..store.base import CredentialStore
from ..utils.logging_config import timed
from .path import authorized_key_selector
from .processor import BatchProcessor
from .schema import SyncResult

logger = logging.getLogger(__name__)


class BulkResynchronizer:
    """Apply a feature state to the credential store."""

    def __init__(
        self,
        datastore: ConfigDatastore,
        store: CredentialStore,
        processor: BatchProcessor,
        feature_name: str = DEFAULT_FEATURE,
        system_root: str = DEFAULT_SYSTEM_ROOT,
    ):
        self.datastore = datastore
        self.store = store
        self.processor = processor
        self.feature_name = feature_name
        self.selector = authorized_key_selector(system_root)

    async def apply_feature_state(self, feature_name: str, enabled: bool) -> SyncResult:
        """
        Apply the state of a feature.

        Features other than the governed one are ignored.
        """
        state = "enabled" if enabled else "disabled"

        if feature_name != self.feature_name:
            logger.info(f'Unknown or unsupported feature "{feature_name}" {state}, ignoring.')
            return SyncResult(operation="ignored", success=True)

        logger.info(f'Feature "{feature_name}" {state}')
        if enabled:
            return await self.resync()
        return await self.wipe()

    @timed("resync")
    async def resync(self) -> SyncResult:
        """Replay every current node as a created event."""
        result = await self.processor.process(self._synthetic_events(), operation="resync")
        if not result.success:
            logger.error(
                f'Failed to enable nodes depending on the "{self.feature_name}" feature.'
            )
        return result

    @timed("wipe")
    async def wipe(self) -> SyncResult:
        """Remove every credential from the store."""
        result = SyncResult(operation="wipe")
        try:
            await self.store.remove_all_credentials()
        except StoreError as e:
            logger.error(f"Failed to remove all credentials: {e}")
            result.error = str(e)
            result.error_kind = e.kind
            return result

        result.success = True
        result.changes_made.append("Removed all credentials")
        return result

    async def _synthetic_events(self) -> AsyncIterator[ChangeEvent]:
        async for value in self.datastore.iter_items(self.selector):
            yield ChangeEvent(
                operation=ChangeOperation.CREATED,
                path=value.path,
                new_value=value,
            )
