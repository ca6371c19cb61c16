# Overview: Bulk stock maintenance (recycle bin); soft delete and restore guarded by live reservations.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import StockItem
from backoffice.time_utils import utcnow
from .audit_service import log_stock_item_event, EVENT_SOFT_DELETED, EVENT_RESTORED
from .availability_service import compute_bulk_availability
from .concurrency import unit_of_work
from .errors import ValidationError, ConsistencyError


def _validate_ids(item_ids, verb: str) -> list[int]:
    if not item_ids:
        raise ValidationError("ids must be a non-empty list of stock item ids", code="INVALID_INPUT")

    try:
        ids = list(dict.fromkeys(int(i) for i in item_ids))
    except (TypeError, ValueError):
        raise ValidationError("ids must be integers", code="INVALID_INPUT")

    limit = current_app.config["BULK_MUTATION_LIMIT"]
    if len(ids) > limit:
        raise ValidationError(
            f"Cannot {verb} more than {limit} items at once",
            code="TOO_MANY_ITEMS",
            details={"limit": limit, "requested": len(ids)},
        )
    return ids


def bulk_soft_delete(item_ids, actor_user_id: int | None = None) -> dict:
    """
    Move stock items to the recycle bin.

    The whole batch is rejected if any item sits on a live order.
    Unknown or already deleted ids are reported, not fatal.
    """
    ids = _validate_ids(item_ids, "delete")

    with unit_of_work():
        items = db.session.query(StockItem).filter(
            StockItem.id.in_(ids),
            StockItem.deleted_at.is_(None),
        ).order_by(StockItem.id).all()
        found_ids = [item.id for item in items]

        availability = compute_bulk_availability(found_ids)
        reserved_ids = [i for i in found_ids if availability.get(i, {}).get("reserved", 0) > 0]
        if reserved_ids:
            raise ConsistencyError(
                f"Cannot delete {len(reserved_ids)} item(s) that are on active orders",
                code="HAS_RESERVED_ITEMS",
                details={"reserved_ids": reserved_ids},
            )

        now = utcnow()
        for item in items:
            item.deleted_at = now
            item.deleted_by_user_id = actor_user_id
            log_stock_item_event(
                stock_item_id=item.id,
                event_type=EVENT_SOFT_DELETED,
                actor_user_id=actor_user_id,
                details={"sku": item.sku},
            )

    current_app.logger.info("Soft deleted %s stock item(s)", len(found_ids))
    return {
        "deleted_count": len(found_ids),
        "deleted_ids": found_ids,
        "requested_count": len(ids),
        "not_found_ids": [i for i in ids if i not in found_ids],
    }


def bulk_restore(item_ids, actor_user_id: int | None = None) -> dict:
    """Bring soft-deleted stock items back. Ids that are not deleted are reported."""
    ids = _validate_ids(item_ids, "restore")

    with unit_of_work():
        items = db.session.query(StockItem).filter(
            StockItem.id.in_(ids),
            StockItem.deleted_at.isnot(None),
        ).order_by(StockItem.id).all()
        found_ids = [item.id for item in items]

        for item in items:
            item.deleted_at = None
            item.deleted_by_user_id = None
            log_stock_item_event(
                stock_item_id=item.id,
                event_type=EVENT_RESTORED,
                actor_user_id=actor_user_id,
                details={"sku": item.sku},
            )

    current_app.logger.info("Restored %s stock item(s)", len(found_ids))
    return {
        "restored_count": len(found_ids),
        "restored_ids": found_ids,
        "requested_count": len(ids),
        "not_found_ids": [i for i in ids if i not in found_ids],
    }
