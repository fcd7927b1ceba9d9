"""API route for the signed-in coordinator's profile."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from load_coordinator.core.auth import CoordinatorContext, get_coordinator_context

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
def get_profile(context: CoordinatorContext = Depends(get_coordinator_context)):
    profile = context.profile
    return {
        **profile.model_dump(mode="json"),
        "theme_color": profile.theme_color,
        "authenticated": context.authenticated,
    }
