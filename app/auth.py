import logging

import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app import config
from app.db_core import load_user, update_selected_branch
from app.db_router import select_branch
from app.errors import InvalidBranchSelection
from app.models import REPORT_IDS, User

logger = logging.getLogger(__name__)

router = APIRouter()
security = HTTPBearer()


def _decode_email(credentials: HTTPAuthorizationCredentials) -> str:
    try:
        payload = jwt.decode(credentials.credentials, config.JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    email = payload.get("email") or payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token")
    return str(email)


# Token auth dependency: the catalog row is re-read on every request so
# branch and permission changes apply without a new token.
def get_current_user(token: HTTPAuthorizationCredentials = Depends(security)) -> User:
    email = _decode_email(token)
    try:
        user = load_user(email)
    except SQLAlchemyError as exc:
        logger.error("Could not load user %s: %s", email, exc)
        raise HTTPException(status_code=503, detail="User catalog unavailable")

    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_expired():
        raise HTTPException(status_code=401, detail="Subscription expired")
    if not user.is_admin and user.email.lower() in config.ADMIN_EMAILS:
        user.is_admin = True
    return user


def require_report(report_id: str):
    """Dependency factory: the authenticated user, if allowed to see ``report_id``."""
    if report_id not in REPORT_IDS:
        raise ValueError(f"Unknown report id {report_id!r}")

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not user.is_admin and not user.allowed_reports.permits(report_id):
            raise HTTPException(status_code=403, detail=f"Report '{report_id}' is not allowed for this user")
        return user

    return dependency


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


class SelectBranchInput(BaseModel):
    index: int


@router.post("/select-branch")
def select_branch_endpoint(data: SelectBranchInput, user: User = Depends(get_current_user)):
    try:
        select_branch(user, data.index)
    except InvalidBranchSelection as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        update_selected_branch(user.id, data.index)
    except SQLAlchemyError as exc:
        logger.error("Failed to persist branch selection for %s: %s", user.id, exc)
        raise HTTPException(status_code=503, detail="Could not save branch selection")
    return {"success": True}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return user.public_dict()
