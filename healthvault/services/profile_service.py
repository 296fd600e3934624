"""Role-specific profile provisioning (patient / doctor records)."""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.models.profile import Doctor, Patient
from healthvault.models.user import User, UserRole

logger = logging.getLogger(__name__)

Profile = Union[Patient, Doctor]


class ProfileProvisioner(ABC):
    """Creates the profile record that goes with a user of one role."""

    model: Type[Profile]

    async def get_profile(self, db: AsyncSession, user: User) -> Optional[Profile]:
        result = await db.execute(select(self.model).where(self.model.email == user.email))
        return result.scalar_one_or_none()

    async def ensure_profile(
        self,
        db: AsyncSession,
        user: User,
        details: Optional[Dict[str, Any]] = None,
    ) -> Profile:
        """Return the user's profile, creating it when missing (legacy accounts have none)."""
        existing = await self.get_profile(db, user)
        if existing:
            return existing

        profile = self.build(user, details or {})
        db.add(profile)
        await db.flush()
        logger.info(f"Created {user.role.value} profile for {user.email[:3]}***")
        return profile

    @abstractmethod
    def build(self, user: User, details: Dict[str, Any]) -> Profile:
        """Construct an unsaved profile row from registration details."""


class PatientProvisioner(ProfileProvisioner):
    model = Patient

    def build(self, user: User, details: Dict[str, Any]) -> Patient:
        gender = details.get("gender")
        dob = details.get("dob")
        if isinstance(dob, str):
            dob = date.fromisoformat(dob)
        return Patient(
            user_id=user.id,
            name=user.full_name or user.email,
            email=user.email,
            phone=details.get("phone"),
            gender=gender.lower() if gender else None,
            date_of_birth=dob,
            blood_group=details.get("blood_group"),
            address=details.get("address"),
        )


class DoctorProvisioner(ProfileProvisioner):
    model = Doctor

    def build(self, user: User, details: Dict[str, Any]) -> Doctor:
        return Doctor(
            user_id=user.id,
            name=user.full_name or user.email,
            email=user.email,
            phone=details.get("phone"),
            address=details.get("address"),
            specialization=details.get("specialty"),
            license_number=details.get("license_number"),
            bio=details.get("bio"),
            years_experience=details.get("years_experience"),
        )


PROVISIONERS: Dict[UserRole, ProfileProvisioner] = {
    UserRole.PATIENT: PatientProvisioner(),
    UserRole.DOCTOR: DoctorProvisioner(),
}


def provisioner_for(role: UserRole) -> Optional[ProfileProvisioner]:
    """Admins have no profile record."""
    return PROVISIONERS.get(role)
