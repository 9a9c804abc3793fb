"""Shared FastAPI dependencies for database access, identity and the scheduler."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from exam_core.database import get_session
from exam_core.models import User
from exam_core.scheduler import DeadlineScheduler


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the logged-in user from the session cookie, if any.

    Logging in is handled by the external auth service, which stores
    ``user_id`` in the signed session.
    """
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    if current_user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return wrapper


def get_scheduler(request: Request) -> DeadlineScheduler:
    return request.app.state.scheduler
