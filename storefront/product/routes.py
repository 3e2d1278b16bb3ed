import re

from flask import request, url_for
from sqlalchemy import or_, desc, asc
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..model import Product, Category, CouponProduct
from ..utils.api import ok, err
from ..utils.decorators import admin_required
from ..utils.money import parse_money
from ..utils.query import paginate
from . import bp


# ---------- helpers ----------
def slugify(text):
    text = text.strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def _parse_bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(v, default=0):
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _parse_opt_int(v):
    if v is None:
        return None
    if isinstance(v, str) and v.strip().lower() in {"", "null"}:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _parse_opt_float(v):
    if v is None:
        return None
    if isinstance(v, str) and v.strip() == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _sort_products(query, sort):
    sort = (sort or "").strip()
    mapping = {
        "id": asc(Product.id), "-id": desc(Product.id),
        "name": asc(Product.name), "-name": desc(Product.name),
        "price": asc(Product.price), "-price": desc(Product.price),
    }
    col = mapping.get(sort, desc(Product.id))  # default newest first (id desc)
    return query.order_by(col)


def _check_category(category_id):
    if category_id is not None and not db.session.get(Category, category_id):
        raise ValueError("category_id does not exist")
    return category_id


def _apply_payload(product: Product, data: dict, creating: bool):
    if "name" in data or creating:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("name is required")
        product.name = name
    if "slug" in data or creating:
        product.slug = slugify(data.get("slug") or product.name)
    if "description" in data:
        product.description = data.get("description")
    if "price" in data or creating:
        product.price = parse_money(data.get("price"), "price")
    if "quantity" in data or creating:
        qty = _parse_int(data.get("quantity", 0), default=-1)
        if qty < 0:
            raise ValueError("quantity must be an integer >= 0")
        product.quantity = qty
    if "subtract_stock" in data or creating:
        product.subtract_stock = _parse_bool(data.get("subtract_stock"), True)
    if "is_active" in data or creating:
        product.is_active = _parse_bool(data.get("is_active"), True)
    if "category_id" in data:
        product.category_id = _check_category(_parse_opt_int(data.get("category_id")))


def _get_product_or_404(pid):
    product = db.session.get(Product, pid)
    if not product:
        return None, err("product not found", 404)
    return product, None


def _filtered_query(args):
    q = (args.get("q") or "").strip()
    ids_param = (args.get("ids") or "").strip()
    min_price = _parse_opt_float(args.get("min_price"))
    max_price = _parse_opt_float(args.get("max_price"))
    category_id = _parse_opt_int(args.get("category_id"))
    in_stock = _parse_bool(args.get("in_stock")) if args.get("in_stock") is not None else None
    active = args.get("active")

    query = Product.query
    if q:
        maybe_id = _parse_opt_int(q)
        like = f"%{q}%"
        conds = [Product.name.ilike(like), Product.slug.ilike(like)]
        if maybe_id is not None:
            conds.append(Product.id == maybe_id)
        query = query.filter(or_(*conds))

    if ids_param:
        try:
            ids_list = [int(x) for x in ids_param.split(",") if x.strip() != ""]
        except ValueError:
            raise ValueError("Invalid ids parameter; must be comma-separated integers")
        if ids_list:
            query = query.filter(Product.id.in_(ids_list))

    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    if in_stock is True:
        query = query.filter(Product.quantity > 0)
    elif in_stock is False:
        query = query.filter(Product.quantity <= 0)

    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if active is not None:
        query = query.filter(Product.is_active.is_(_parse_bool(active)))
    return query


# ---------- routes ----------
# GET /api/products
@bp.get("")
def list_products():
    """
    Query params:
      q            -> substring match on name/slug; if q is an int, also match id
      ids          -> comma-separated ids, e.g. "1,3,9"
      min_price    -> float
      max_price    -> float
      in_stock     -> bool (true/false)
      category_id  -> int
      active       -> bool
      sort         -> id, -id, name, -name, price, -price
      page         -> int, default 1
      per_page     -> int, default 15 (cap 100)
    """
    query = _sort_products(_filtered_query(request.args), request.args.get("sort"))
    page_data = paginate(query, request.args.get("page"), request.args.get("per_page"), default_per_page=15)
    return ok("Products fetched", {
        "items": [p.as_api() for p in page_data["items"]],
        "meta": page_data["meta"],
    })


@bp.get("/count")
def count_products():
    return ok("Products counted", {"count": _filtered_query(request.args).count()})


# GET /api/products/<id>
@bp.get("/<int:pid>")
def get_product(pid):
    product, resp = _get_product_or_404(pid)
    if resp:
        return resp
    return ok("Product fetched", product.as_api())


# POST /api/products
@bp.post("")
@admin_required
def create_product():
    data = request.get_json(silent=True) or {}
    product = Product()
    _apply_payload(product, data, creating=True)
    try:
        db.session.add(product)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return err("Duplicate slug", 409, {"conflicts": {"slug": product.slug}})

    resp = ok("Product created", product.as_api(), status=201)
    resp.headers["Location"] = url_for("product.get_product", pid=product.id, _external=True)
    return resp


# PUT /api/products/<id>
@bp.put("/<int:pid>")
@bp.patch("/<int:pid>")
@admin_required
def update_product(pid):
    product, resp = _get_product_or_404(pid)
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    _apply_payload(product, data, creating=False)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return err("Duplicate slug", 409, {"conflicts": {"slug": data.get("slug")}})
    return ok("Product updated", product.as_api())


# DELETE /api/products/<id>
@bp.delete("/<int:pid>")
@admin_required
def delete_product(pid):
    product, resp = _get_product_or_404(pid)
    if resp:
        return resp
    # coupon scopes must not keep pointing at a deleted product
    unbound = CouponProduct.query.filter_by(product_id=pid).delete(synchronize_session=False)
    db.session.delete(product)
    db.session.commit()
    return ok("Product deleted", {"id": pid, "coupon_bindings_removed": unbound})
