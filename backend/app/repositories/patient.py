"""Patient, doctor and admin profile repository."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.patient import Patient
from app.models.staff import Admin, Doctor
from app.schemas.patient import AdminSignupData, DoctorSignupData, PatientSignupData


class ProfileRepository:
    """Reads patient profiles and provisions role profiles."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_patient(self, patient_id: uuid.UUID) -> Patient | None:
        return await self.db.get(Patient, patient_id)

    async def get_doctor(self, doctor_id: uuid.UUID) -> Doctor | None:
        return await self.db.get(Doctor, doctor_id)

    async def list_patients(self, skip: int = 0, limit: int = 50) -> tuple[list[Patient], int]:
        """List patients ordered by name.

        Returns:
            Tuple of (patients, total count).
        """
        total = await self.db.scalar(select(func.count()).select_from(Patient))
        result = await self.db.execute(
            select(Patient).order_by(Patient.name, Patient.id).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def create_profile(
        self, data: PatientSignupData | DoctorSignupData | AdminSignupData
    ) -> Patient | Doctor | Admin:
        """Insert the profile row matching the signup role.

        The row is flushed, not committed.
        """
        fields = data.model_dump(exclude={"role"})
        if isinstance(data, PatientSignupData):
            profile = Patient(**fields)
        elif isinstance(data, DoctorSignupData):
            profile = Doctor(**fields)
        else:
            profile = Admin(**fields)

        self.db.add(profile)
        await self.db.flush()
        return profile
