# Overview: Shared list/pagination envelope used by the tenant-scoped list operations.

from __future__ import annotations

from flask import current_app


def paginate(query, page: int | None = None, per_page: int | None = None) -> dict:
    """
    Run an ordered query and wrap the rows in the list envelope.

    - page is None: return every row, {"items", "count"}
    - page given: 1-indexed page, per_page defaults to DEFAULT_PAGE_SIZE and
      is capped at MAX_PAGE_SIZE; adds a "pagination" block
    """
    # If no pagination requested, return all items
    if page is None:
        rows = query.all()
        return {
            "items": [r.to_dict() for r in rows],
            "count": len(rows),
        }

    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    per_page = min(per_page or default_size, max_size)
    per_page = max(per_page, 1)
    page = max(page, 1)  # Ensure page >= 1

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
