"""
Profiles

DESIGN DECISION: Email uniqueness is checked when a profile is written,
not discovered afterwards. Emails compare case- and
whitespace-insensitively; the address is stored as the user typed it
(trimmed).

The SQL backend also enforces this with a unique index on the
lower-cased email, so a race between two registrations still ends in
DuplicateEmailError for one of them.
"""

from collections import defaultdict
from typing import Any, Optional
from uuid import UUID

from fintrack.errors import DuplicateEmailError
from fintrack.ledger.base import RecordService
from fintrack.models.activity import (
    ActivityEntry,
    ActivityEntryBuilder,
    ActivityType,
    diff_records,
)
from fintrack.models.finance import Profile
from fintrack.models.tables import Table
from fintrack.services.storage import DuplicateError


def normalize_email(email: str) -> str:
    return email.strip().lower()


class ProfileService(RecordService):

    normalize_email = staticmethod(normalize_email)

    async def is_email_available(self, email: str, exclude_user_id: Optional[UUID] = None) -> bool:
        existing = await self._storage.find_profile_by_email(normalize_email(email))
        return existing is None or existing.id == exclude_user_id

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        return await self._storage.get(Table.PROFILES, user_id)

    async def register(
        self,
        user_id: UUID,
        email: str,
        full_name: Optional[str] = None,
        local_currency: str = "USD",
    ) -> Profile:
        """
        Create a profile.

        Raises:
            DuplicateEmailError: If the email is already registered
        """
        email = email.strip()
        if not await self.is_email_available(email):
            self._logger.warning("duplicate_email_rejected", email=normalize_email(email))
            raise DuplicateEmailError(email)

        profile = Profile(
            id=user_id,
            email=email,
            full_name=full_name,
            local_currency=local_currency,
        )
        try:
            await self._storage.insert(Table.PROFILES, profile)
        except DuplicateError as e:
            # Lost a race against another registration, or the id is taken
            if not await self.is_email_available(email):
                raise DuplicateEmailError(email) from e
            raise

        await self._activity.log(ActivityEntryBuilder.profile_registered(user_id, email))
        return profile

    async def update_profile(self, user_id: UUID, **changes: Any) -> Profile:
        """
        Update a profile. A new email must not belong to another user.

        Raises:
            DuplicateEmailError: If the new email is taken
        """
        old = await self._require(Table.PROFILES, user_id, "profile")
        if "email" in changes:
            changes["email"] = changes["email"].strip()
            if not await self.is_email_available(changes["email"], exclude_user_id=user_id):
                raise DuplicateEmailError(changes["email"])

        new = old.with_changes(**changes)
        await self._storage.update(Table.PROFILES, new)

        diff = diff_records(old, new)
        if diff:
            await self._activity.log(ActivityEntry(
                user_id=user_id,
                activity_type=ActivityType.PROFILE_UPDATED,
                entity_type="profile",
                entity_id=user_id,
                description=f"Profile updated: {', '.join(sorted(diff['new']))}"[:500],
                changes=diff,
            ))
        return new

    async def find_duplicate_emails(self) -> dict[str, list[Profile]]:
        """
        Groups of profiles sharing a normalized email.

        Only data written before registration checked emails can
        produce a group here.
        """
        groups: dict[str, list[Profile]] = defaultdict(list)
        for profile in await self._storage.list_records(Table.PROFILES, order_by="created_at"):
            groups[normalize_email(profile.email)].append(profile)
        duplicates = {email: profiles for email, profiles in groups.items() if len(profiles) > 1}
        if duplicates:
            self._logger.warning("duplicate_emails_found", groups=len(duplicates))
        return duplicates
