"""
Authorization tiers.

Every endpoint declares exactly one tier:

    PUBLIC < PROTECTED < STAFF < ADMIN

A tier is an ordered pipeline of checks. Each check looks at the Caller,
may load data onto it, and raises to stop the request before the handler
runs. Checks are plain functions so they can be composed and tested on
their own.

Usage:
    @router.get("/things")
    async def list_things(caller: Caller = Depends(require(Tier.STAFF))):
        ...
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request

from coach.core.exceptions import ForbiddenError, UnauthorizedError
from coach.core.logging_config import get_logger
from coach.database.connection import DatabaseConnection, get_database
from coach.database.models import Role, User

logger = get_logger(__name__)

SESSION_USER_KEY = "user_id"


class Tier(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    STAFF = "staff"
    ADMIN = "admin"


@dataclass
class Caller:
    """Who is making the request, as far as the checks have established."""
    user_id: Optional[str]
    user: Optional[User] = None

    @property
    def role(self) -> Optional[str]:
        return self.user.role if self.user is not None else None


Check = Callable[[Caller, DatabaseConnection], None]


def check_authenticated(caller: Caller, db: DatabaseConnection) -> None:
    """The session names a user that still exists."""
    if not caller.user_id:
        raise UnauthorizedError()
    with db.get_session() as session:
        user = session.get(User, caller.user_id)
    if user is None:
        raise UnauthorizedError()
    caller.user = user


def check_staff(caller: Caller, db: DatabaseConnection) -> None:
    if caller.role not in (Role.STAFF.value, Role.ADMIN.value):
        raise ForbiddenError()


def check_admin(caller: Caller, db: DatabaseConnection) -> None:
    if caller.role != Role.ADMIN.value:
        raise ForbiddenError()


PIPELINES: Dict[Tier, Tuple[Check, ...]] = {
    Tier.PUBLIC: (),
    Tier.PROTECTED: (check_authenticated,),
    Tier.STAFF: (check_authenticated, check_staff),
    Tier.ADMIN: (check_authenticated, check_admin),
}


def session_user_id(request: Request) -> Optional[str]:
    return request.session.get(SESSION_USER_KEY)


def login(request: Request, user_id: str) -> None:
    request.session[SESSION_USER_KEY] = user_id


def logout(request: Request) -> None:
    request.session.clear()


def authorize(
    tier: Tier,
    user_id: Optional[str],
    db: Optional[DatabaseConnection] = None,
) -> Caller:
    """Run the tier's pipeline for a user id. Raises on the first failed check."""
    caller = Caller(user_id=user_id)
    db = db or get_database()
    for check in PIPELINES[tier]:
        check(caller, db)
    return caller


def require(tier: Tier) -> Callable[[Request], Caller]:
    """FastAPI dependency enforcing a tier before the handler body runs."""
    def _dependency(request: Request) -> Caller:
        return authorize(tier, session_user_id(request))

    _dependency.__name__ = f"require_{tier.value}"
    return _dependency
