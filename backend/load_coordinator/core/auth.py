"""Coordinator identity resolution and role checks for API routes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from load_coordinator.core.config import Settings
from load_coordinator.core.dependencies import get_app_settings, get_store
from load_coordinator.core.logging import logger
from load_coordinator.models.loads import Organization, Role, UserProfile
from load_coordinator.services.load_store import LoadStore


security = HTTPBearer(auto_error=False)


@dataclass
class CoordinatorContext:
    email: str
    authenticated: bool
    profile: UserProfile

    @property
    def role(self) -> Role:
        return self.profile.role


def _parse_user_tokens(raw: str) -> Dict[str, str]:
    """Parse `token:email` comma-separated values from env."""
    mapping: Dict[str, str] = {}
    if not raw.strip():
        return mapping

    for segment in raw.split(","):
        item = segment.strip()
        if not item:
            continue
        if ":" not in item:
            logger.warning("Ignoring malformed user token mapping entry", entry=item)
            continue
        token, email = item.split(":", 1)
        token = token.strip()
        email = email.strip().lower()
        if token and email:
            mapping[token] = email
    return mapping


def default_profile(email: str) -> UserProfile:
    """Profile assigned the first time an email signs in."""
    lowered = email.lower()
    if "wsi" in lowered:
        return UserProfile(
            email=email,
            role=Role.OPERATOR,
            organization=Organization.WSI,
            location_filter="WSI",
        )
    if "jordan" in lowered:
        return UserProfile(
            email=email,
            role=Role.OPERATOR,
            organization=Organization.JORDAN,
            carrier_filter="Jordan",
        )
    return UserProfile(email=email, role=Role.ADMIN, organization=Organization.WILLBANKS)


def load_profile(store: LoadStore, email: str) -> UserProfile:
    row = store.get("user_profiles", email)
    if row is not None:
        return UserProfile(**row)
    profile = default_profile(email)
    store.upsert("user_profiles", [profile.model_dump(mode="json")], conflict_key=["email"])
    logger.info("User profile created", email=email, organization=profile.organization.value, role=profile.role.value)
    return profile


def get_coordinator_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    settings: Settings = Depends(get_app_settings),
    store: LoadStore = Depends(get_store),
) -> CoordinatorContext:
    """Resolve the signed-in coordinator from a bearer token or the email header."""
    if not settings.auth_enabled:
        email = (x_user_email or settings.default_user_email).strip().lower() or settings.default_user_email
        return CoordinatorContext(email=email, authenticated=False, profile=load_profile(store, email))

    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
        )

    token_map = _parse_user_tokens(settings.user_tokens)
    email = token_map.get(credentials.credentials.strip())
    if not email:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid bearer token",
        )

    if x_user_email and x_user_email.strip() and x_user_email.strip().lower() != email:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token user mismatch",
        )

    return CoordinatorContext(email=email, authenticated=True, profile=load_profile(store, email))


def require_roles(*allowed_roles: Role):
    """Dependency factory that enforces role-based access control."""
    allowed = {Role(role) for role in allowed_roles}
    if not allowed:
        raise ValueError("At least one role is required")

    def _guard(context: CoordinatorContext = Depends(get_coordinator_context)) -> CoordinatorContext:
        if context.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{context.role.value}' not permitted for this operation",
            )
        return context

    return _guard
