from datetime import timedelta
import uuid

from flask import request, current_app
from werkzeug.security import generate_password_hash, check_password_hash
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity

from . import bp
from ..model import User, RefreshToken
from ..extensions import db
from ..utils.api import ok, err
from ..utils.dates import utcnow


# --- helper: create & persist a token pair ---
def _issue_tokens(user_id: int):
    access_token = create_access_token(identity=str(user_id))
    refresh_token_str = str(uuid.uuid4())
    refresh_row = RefreshToken(
        user_id=user_id,
        token=refresh_token_str,
        expires_at=utcnow() + timedelta(days=current_app.config.get("REFRESH_TOKEN_DAYS", 7)),
    )
    db.session.add(refresh_row)
    return access_token, refresh_token_str


@bp.post("/register")
@jwt_required(optional=True)   # public signups; only an admin caller may grant a role
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()

    if not email:
        return err("Email required", 400)
    if not password or len(password) < 6:
        return err("Password required, min 6 chars", 400)
    if not name:
        return err("Name required", 400)
    if User.query.filter_by(email=email).first():
        return err("Email already registered", 409)

    # Bootstrap: very first account becomes admin
    is_first_user = db.session.query(User.id).count() == 0
    role = "admin" if is_first_user else "user"

    requested_role = (data.get("role") or "user").strip().lower()
    caller_id = get_jwt_identity()
    if not is_first_user and caller_id:
        caller = db.session.get(User, int(caller_id)) if str(caller_id).isdigit() else None
        if caller and caller.role == "admin" and requested_role in {"user", "admin"}:
            role = requested_role

    user = User(email=email, password_hash=generate_password_hash(password), name=name, role=role)
    db.session.add(user)
    db.session.commit()

    return ok("Account created successfully", {"user": user.as_dict()}, status=201)


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return err("Email and password are required", 400)
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        return err("Invalid email or password", 401)

    access_token, token_str = _issue_tokens(user.id)
    db.session.commit()

    return ok("You've logged in successfully", {
        "user": user.as_dict(),
        "token": access_token,
        "refresh_token": token_str,
    })


@bp.get("/me")
@jwt_required()
def me():
    uid = get_jwt_identity()
    user = db.session.get(User, int(uid))
    if not user:
        return err("user not found", 404)
    return ok("OK", {"user": user.as_dict()})


@bp.post("/refresh")
def refresh():
    data = request.get_json(silent=True) or {}
    token_str = data.get("refresh_token")
    if not token_str:
        return err("refresh_token is required", 400)

    refresh_row = RefreshToken.query.filter_by(token=token_str).first()
    if not refresh_row or refresh_row.expires_at < utcnow():
        return err("Invalid or expired refresh token", 401)

    user_id = refresh_row.user_id

    # ROTATE: the old refresh token is single-use
    db.session.delete(refresh_row)
    db.session.flush()

    new_access, new_refresh = _issue_tokens(user_id)
    db.session.commit()

    return ok("Token refreshed", {"token": new_access, "refresh_token": new_refresh})
