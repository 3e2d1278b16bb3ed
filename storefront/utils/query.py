# storefront/utils/query.py


def to_int(v, default=None):
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def paginate(query, page, per_page, default_per_page=10):
    page = max(to_int(page, 1), 1)
    per_page = min(max(to_int(per_page, default_per_page), 1), 100)
    items = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "meta": {
            "page": items.page,
            "pages": items.pages or 1,
            "per_page": per_page,
            "total": items.total,
        },
        "items": items.items,
    }
