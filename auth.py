import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, to_object_id
from errors import BadRequest, Conflict, Forbidden, Unauthorized
from schemas import LoginRequest, RegisterRequest, Role, User as UserSchema

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

INVALID_CREDENTIALS = "Invalid credentials"

router = APIRouter(prefix="/auth", tags=["auth"])


def public_user(user: dict) -> Dict[str, Any]:
    out = {"id": str(user["_id"]), "email": user["email"], "role": user.get("role", Role.USER.value)}
    if user.get("created_at"):
        out["created_at"] = user["created_at"].isoformat()
    return out


def create_token(user_id: str, email: str, role: str) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def register(db: Database, email: str, password: str, role: Optional[Role] = None) -> Dict[str, Any]:
    if db["user"].find_one({"email": email}):
        raise Conflict("Email already exists")
    user = UserSchema(email=email, password_hash=pwd_context.hash(password), role=role or Role.USER)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("Email already exists")
    created = db["user"].find_one({"_id": to_object_id(user_id)})
    logger.info("Registered user %s (%s)", user_id, created["role"])
    return {
        "user": public_user(created),
        "access_token": create_token(user_id, created["email"], created["role"]),
    }


def login(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email})
    # unknown e-mail and wrong password must be indistinguishable
    if not user or not pwd_context.verify(password, user.get("password_hash", "")):
        raise Unauthorized(INVALID_CREDENTIALS)
    return {
        "user": public_user(user),
        "access_token": create_token(str(user["_id"]), user["email"], user.get("role", Role.USER.value)),
    }


def validate_user(db: Database, user_id: str) -> Dict[str, Any]:
    try:
        oid = to_object_id(user_id)
    except BadRequest:
        raise Unauthorized("User not found")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise Unauthorized("User not found")
    return {"id": str(user["_id"]), "email": user["email"], "role": user.get("role", Role.USER.value)}


def has_role(identity: Dict[str, Any], required_role: Role) -> bool:
    return identity.get("role") == required_role.value


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Missing or invalid authorization header")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    return validate_user(db, user_id)


def require_role(role: Role):
    def guard(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if not has_role(user, role):
            raise Forbidden(f"{role.value} role required")
        return user

    return guard


require_admin = require_role(Role.ADMIN)


# Routes
@router.post("/register", status_code=201)
def register_route(req: RegisterRequest, db: Database = Depends(get_db)):
    return register(db, req.email, req.password, req.role)


@router.post("/login")
def login_route(req: LoginRequest, db: Database = Depends(get_db)):
    return login(db, req.email, req.password)


@router.get("/profile")
def profile(user: Dict[str, Any] = Depends(get_current_user)):
    return user
