"""
Administrative item endpoints.

Single-key read and the moderation hook. Mounted only when
``ADMIN_API_ENABLED`` is set; never part of the public edge surface.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from comment_pipeline.core.errors import (
    InvalidStatusTransition,
    ItemNotFoundError,
    TransientStoreError,
)
from comment_pipeline.core.item_store import ItemStore
from comment_pipeline.models import ItemType, StatusTransitionRequest, StoredItemDTO

router = APIRouter()
logger = logging.getLogger(__name__)


async def get_item_store() -> ItemStore:
    """Get item store instance."""
    return ItemStore()


@router.get("/{item_type}/{item_id}", response_model=StoredItemDTO)
async def read_item(
    item_type: ItemType,
    item_id: str,
    store: ItemStore = Depends(get_item_store),
) -> StoredItemDTO:
    """
    Fetch one stored item by its primary key.

    Raises:
        HTTPException: 404 if the item does not exist, 503 if the store is unavailable.
    """
    try:
        item = await store.get_item(item_type, item_id)
    except TransientStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable") from e
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return item


@router.put("/{item_type}/{item_id}/status", response_model=StoredItemDTO)
async def update_item_status(
    item_type: ItemType,
    item_id: str,
    request: StatusTransitionRequest,
    store: ItemStore = Depends(get_item_store),
) -> StoredItemDTO:
    """
    Record a moderation decision for an item.

    Raises:
        HTTPException: 404 if the item does not exist, 409 if the transition is
            not allowed, 503 if the store is unavailable.
    """
    try:
        return await store.transition_status(item_type, item_id, request.status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found") from e
    except TransientStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store unavailable") from e
