"""
Keyed Store access for the comment pipeline.

Every operation touches exactly one primary key ``(item_type, item_id)``.
Creation is a single conditional insert, so concurrent writers of the same key
need no locking: the database decides which insert wins and the other sees
``DuplicateKeyConflict``.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from comment_pipeline.core.errors import (
    DuplicateKeyConflict,
    InvalidStatusTransition,
    ItemNotFoundError,
    TransientStoreError,
)
from comment_pipeline.models import ItemType, ModerationStatus, StoredItemDTO, StoredItemORM
from comment_pipeline.utils.db_session import session_scope

logger = logging.getLogger(__name__)


class ItemStore:
    """
    Single-key get/create/update access to the ``stored_items`` table.
    """
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """
        Initializes the ItemStore.

        Args:
            session_factory: Optional session factory. Defaults to the application's
                             cached factory bound to ``settings.DATABASE_URL``.
        """
        self._session_factory = session_factory

    @staticmethod
    def create_statement(dialect_name: str, item: StoredItemDTO, created_at: datetime):
        """Conditional insert of ``item`` that returns its key only when a row was written."""
        insert = sqlite.insert if dialect_name == "sqlite" else postgresql.insert
        return (
            insert(StoredItemORM)
            .values(
                item_type=item.item_type.value,
                item_id=item.item_id,
                payload=item.payload,
                status=item.status.value,
                received_at=item.received_at,
                created_at=created_at,
            )
            .on_conflict_do_nothing(index_elements=["item_type", "item_id"])
            .returning(StoredItemORM.item_id)
        )

    async def create_if_absent(self, item: StoredItemDTO) -> StoredItemDTO:
        """
        Creates the item only if its key is not present yet.

        Args:
            item: The item to create. Its status is written as given (ingestion
                  always passes ``pending``).

        Returns:
            The created item, with ``created_at`` set.

        Raises:
            DuplicateKeyConflict: The key already exists; nothing was written.
            TransientStoreError: The store failed; nothing was written.
        """
        created_at = datetime.now(timezone.utc)
        try:
            async with session_scope(self._session_factory) as session:
                stmt = self.create_statement(session.get_bind().dialect.name, item, created_at)
                result = await session.execute(stmt)
                inserted_id = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                f"Database error creating item ({item.item_type.value}, {item.item_id}): {e}",
                exc_info=True,
            )
            raise TransientStoreError(f"Store unavailable: {e.__class__.__name__}", request_id=item.item_id) from e

        if inserted_id is None:
            raise DuplicateKeyConflict(item.item_type.value, item.item_id)

        logger.info(f"Created stored item ({item.item_type.value}, {item.item_id})")
        return item.model_copy(update={"created_at": created_at})

    async def get_item(self, item_type: ItemType, item_id: str) -> Optional[StoredItemDTO]:
        """Returns the item stored under the key, or None."""
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(StoredItemORM).where(
                        (StoredItemORM.item_type == item_type.value) &
                        (StoredItemORM.item_id == item_id)
                    )
                )
                item_orm = result.scalars().first()
                return StoredItemDTO.model_validate(item_orm) if item_orm else None
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database error reading item ({item_type.value}, {item_id}): {e}", exc_info=True)
            raise TransientStoreError(f"Store unavailable: {e.__class__.__name__}", request_id=item_id) from e

    async def transition_status(
        self,
        item_type: ItemType,
        item_id: str,
        status: ModerationStatus,
    ) -> StoredItemDTO:
        """
        Applies a moderation decision to an existing item.

        Only ``status`` and ``updated_at`` change. Moving an item back to
        ``pending`` is refused since ``pending`` is reserved for ingestion.

        Raises:
            InvalidStatusTransition: ``status`` is ``pending``.
            ItemNotFoundError: No item exists under the key.
            TransientStoreError: The store failed.
        """
        if status == ModerationStatus.PENDING:
            raise InvalidStatusTransition("Items cannot be moved back to 'pending'")

        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(StoredItemORM)
                    .where(
                        (StoredItemORM.item_type == item_type.value) &
                        (StoredItemORM.item_id == item_id)
                    )
                    .values(status=status.value, updated_at=datetime.now(timezone.utc))
                    .returning(StoredItemORM)
                )
                item_orm = result.scalars().first()
                updated = StoredItemDTO.model_validate(item_orm) if item_orm else None
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database error updating status of ({item_type.value}, {item_id}): {e}", exc_info=True)
            raise TransientStoreError(f"Store unavailable: {e.__class__.__name__}", request_id=item_id) from e

        if updated is None:
            raise ItemNotFoundError(item_type.value, item_id)

        logger.info(f"Item ({item_type.value}, {item_id}) moved to status '{status.value}'")
        return updated
