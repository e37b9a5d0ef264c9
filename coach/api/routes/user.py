"""
User Routes - Admin user management.

Endpoints:
- GET   /user           : Paginated list with role filter and search
- GET   /user/{id}      : Detail with recent sessions and invitations
- PATCH /user/{id}/role : Change a user's role
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from coach.api.access import Caller, Tier, require
from coach.models.schemas import UpdateRoleRequest
from coach.services.user_service import UserService, get_user_service

router = APIRouter(prefix="/user", tags=["Users"])


class UserListResponse(BaseModel):
    users: List[Dict[str, Any]]
    next_cursor: Optional[str] = None


class RoleUpdateResponse(BaseModel):
    id: str
    name: Optional[str] = None
    role: str


@router.get("", response_model=UserListResponse, summary="List users")
async def list_users(
    cursor: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    role: Optional[str] = Query(default=None, pattern="^(GUEST|USER|STAFF|ADMIN)$"),
    search: Optional[str] = None,
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    page = service.list_users(cursor=cursor, limit=limit, role=role, search=search)
    return UserListResponse(users=page.users, next_cursor=page.next_cursor)


@router.get("/{user_id}", summary="Get a user")
async def get_user(
    user_id: str,
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    return service.get_user(user_id)


@router.patch("/{user_id}/role", response_model=RoleUpdateResponse, summary="Change a user's role")
async def update_role(
    user_id: str,
    body: UpdateRoleRequest,
    caller: Caller = Depends(require(Tier.ADMIN)),
    service: UserService = Depends(get_user_service),
) -> RoleUpdateResponse:
    return RoleUpdateResponse(**service.update_role(caller.user_id, user_id, body.role))
