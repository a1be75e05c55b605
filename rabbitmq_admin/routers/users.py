"""User records consumed by cluster authorization.

Routes
──────
  GET    /api/users/me          → current principal (any user)
  GET    /api/users             → all users (admin)
  POST   /api/users             → create a user (admin)
  DELETE /api/users/{user_id}   → delete a user and its assignments (admin)

Passwords and login are handled by the identity provider in front of this
service; only identity, role and cluster assignments are stored here.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from rabbitmq_admin.clients.credential_store import CredentialStore
from rabbitmq_admin.deps import get_credential_store, get_principal, require_admin
from rabbitmq_admin.models import CreateUserRequest, Principal, User, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


async def _response(user: User, store: CredentialStore) -> UserResponse:
    assigned = await store.assigned_cluster_ids(user.id)
    return UserResponse(**user.model_dump(), assigned_cluster_ids=sorted(assigned))


@router.get("/me", response_model=UserResponse)
async def me(
    principal: Principal = Depends(get_principal),
    store: CredentialStore = Depends(get_credential_store),
) -> UserResponse:
    user = await store.get_user(principal.id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return await _response(user, store)


@router.get("", response_model=list[UserResponse])
async def list_users(
    _: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> list[UserResponse]:
    return [await _response(u, store) for u in await store.list_users()]


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    body: CreateUserRequest,
    admin: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> UserResponse:
    user = await store.create_user(body.username, body.role)
    logger.info("User '%s' created by '%s'", user.username, admin.username)
    return await _response(user, store)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    admin: Principal = Depends(require_admin),
    store: CredentialStore = Depends(get_credential_store),
) -> None:
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Administrators cannot delete themselves")
    await store.delete_user(user_id)
    logger.info("User %s deleted by '%s'", user_id, admin.username)
