import json
import logging
from typing import List

from braidr.db.storage import KeyValueStorage, FAVORITES_KEY

logger = logging.getLogger(__name__)

async def get_favorites(storage: KeyValueStorage) -> List[str]:
    """
    Get the stylist ids favorited on this device
    """
    raw = await storage.get_item(FAVORITES_KEY)
    if not raw:
        return []
    try:
        favorites = json.loads(raw)
    except ValueError:
        logger.warning("Favorites entry is not valid JSON, treating as empty")
        return []
    if not isinstance(favorites, list):
        return []
    return [str(stylist_id) for stylist_id in favorites]

async def add_favorite(storage: KeyValueStorage, stylist_id: str) -> List[str]:
    """
    Add a stylist to favorites; adding an existing id leaves the list unchanged
    """
    favorites = await get_favorites(storage)
    if stylist_id not in favorites:
        favorites.append(stylist_id)
        await storage.set_item(FAVORITES_KEY, json.dumps(favorites))
    return favorites

async def remove_favorite(storage: KeyValueStorage, stylist_id: str) -> List[str]:
    """
    Remove a stylist from favorites; removing a missing id is not an error
    """
    favorites = await get_favorites(storage)
    if stylist_id in favorites:
        favorites = [fav for fav in favorites if fav != stylist_id]
        await storage.set_item(FAVORITES_KEY, json.dumps(favorites))
    return favorites

async def is_stylist_favorited(storage: KeyValueStorage, stylist_id: str) -> bool:
    """
    Check if a stylist is in favorites
    """
    return stylist_id in await get_favorites(storage)
