"""
Entry and landing pages.

Only enough of the surrounding app to show whether a user is present.
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from storybooks.dependencies.auth import current_user, require_authenticated
from storybooks.models.user import User

router = APIRouter(tags=["Pages"])


class UserResponse(BaseModel):
    """Public view of a user."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None


@router.get("/")
async def index(user: User | None = Depends(current_user)):
    """
    Public entry page.

    Shows the login link for anonymous visitors.
    """
    return {
        "page": "login",
        "authenticated": user is not None,
        "user": UserResponse.model_validate(user).model_dump(mode="json") if user else None,
        "login_url": "/auth/google",
    }


@router.get("/dashboard")
async def dashboard(user: User = Depends(require_authenticated)):
    """Protected landing page."""
    return {
        "page": "dashboard",
        "user": UserResponse.model_validate(user).model_dump(mode="json"),
    }
