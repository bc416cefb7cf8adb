"""Profile service — persistence for keeper profiles.

Learn: Service layer separates business logic from HTTP routing.
Every successful write (create, update, activate) commits first and then
tells the notifier, which publishes a profile_updated fact in the
background. The write never waits on, or fails because of, Redis.

Request handlers get a service through get_profile_service(), which hands
it the notifier the app lifespan built, so every write made inside the
running app is announced.
"""

import uuid
from typing import Optional

import structlog
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from herpkeeper.auth.password import hash_password
from herpkeeper.db.engine import get_db
from herpkeeper.db.models import ROLES, Profile
from herpkeeper.realtime.notifier import ProfileUpdateNotifier

logger = structlog.get_logger()


class ProfileNotFoundError(Exception):
    """Raised when a profile to update or activate does not exist."""


class ProfileService:
    """Business logic for profiles."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[ProfileUpdateNotifier] = None,
    ):
        self.db = db
        self.notifier = notifier

    async def create(
        self,
        username: str,
        email: str,
        name: str,
        password: str,
        role: str = "member",
        active: bool = False,
        activation_key: Optional[str] = None,
        food_types: Optional[list[str]] = None,
    ) -> Profile:
        logger.debug("profile.create", username=username)
        if role not in ROLES:
            raise ValueError(f"Invalid role {role!r}")
        profile = Profile(
            username=username,
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=role,
            active=active,
            activation_key=activation_key,
            food_types=food_types or [],
        )
        self.db.add(profile)
        await self._saved(profile)
        return profile

    async def get(self, profile_id: uuid.UUID) -> Optional[Profile]:
        return await self.db.get(Profile, profile_id)

    async def find_by_username(self, username: str) -> Optional[Profile]:
        result = await self.db.execute(
            select(Profile).where(Profile.username == username)
        )
        return result.scalars().first()

    async def update(
        self,
        profile_id: uuid.UUID,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        food_types: Optional[list[str]] = None,
    ) -> Profile:
        """Apply the given changes. Password changes are re-hashed."""
        logger.debug("profile.update", profile_id=str(profile_id))
        profile = await self.get(profile_id)
        if not profile:
            logger.warning("profile.update_not_found", profile_id=str(profile_id))
            raise ProfileNotFoundError(f"Could not find profile {profile_id}")

        if name is not None:
            profile.name = name
        if email is not None:
            profile.email = email
        if password is not None:
            profile.password_hash = hash_password(password)
        if food_types is not None:
            profile.food_types = list(food_types)

        await self._saved(profile)
        return profile

    async def activate(self, profile_id: uuid.UUID, key: str) -> Profile:
        logger.debug("profile.activate", profile_id=str(profile_id))
        result = await self.db.execute(
            select(Profile).where(
                Profile.id == profile_id, Profile.activation_key == key
            )
        )
        profile = result.scalars().first()
        if not profile:
            logger.warning("profile.activate_failed", profile_id=str(profile_id))
            raise ProfileNotFoundError(f"Failed to activate profile {profile_id}")

        profile.active = True
        profile.activation_key = None
        await self._saved(profile)
        return profile

    async def remove(self, profile_id: uuid.UUID) -> bool:
        logger.debug("profile.remove", profile_id=str(profile_id))
        profile = await self.get(profile_id)
        if not profile:
            return False
        await self.db.delete(profile)
        await self.db.commit()
        return True

    async def _saved(self, profile: Profile) -> None:
        await self.db.commit()
        await self.db.refresh(profile)
        if self.notifier is not None:
            self.notifier.notify_profile_saved(profile.id, profile.username)


def get_profile_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ProfileService:
    """FastAPI dependency: a ProfileService wired to the app's notifier."""
    return ProfileService(db, notifier=getattr(request.app.state, "notifier", None))
