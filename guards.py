from typing import Any, Dict

import structlog

from database import EntityStore, objid
from errors import NotFound, Unauthorized

logger = structlog.get_logger()


def authorize(resource_owner_id, acting_id) -> None:
    """Raise Unauthorized unless the actor owns the resource."""
    if acting_id is None or str(resource_owner_id) != str(acting_id):
        raise Unauthorized("You are not allowed to modify this resource")


def load_owned(store: EntityStore, collection: str, doc_id, acting_id, noun: str) -> Dict[str, Any]:
    doc = store.find_by_id(collection, objid(doc_id, f"{noun}_id"))
    if not doc:
        raise NotFound(f"{noun.capitalize()} not found")
    try:
        authorize(doc.get("owner"), acting_id)
    except Unauthorized:
        logger.warning(
            "Mutation rejected for non-owner",
            collection=collection,
            id=str(doc["_id"]),
            actor=str(acting_id),
        )
        raise
    return doc
