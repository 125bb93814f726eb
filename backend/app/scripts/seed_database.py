"""Seed the database with a demo patient, doctor and visit history.

Creates one doctor, one patient and a handful of past visits so the
diagnostic chat has history and similar cases to draw on. Visits are
embedded when OPENAI_API_KEY is configured.

Usage:
    uv run python -m app.scripts.seed_database

The script is idempotent - profiles are matched on auth_user_id and
visits are only created for a patient that has none.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, text

from app.config import settings
from app.database import async_session_maker, engine
from app.exceptions import EmbeddingUnavailableError
from app.models.patient import Gender, Patient
from app.models.staff import Doctor
from app.models.visit import ConfidenceLevel, UrgencyLevel, Visit, VisitType
from app.services.embeddings import EmbeddingService

DEMO_DOCTOR = {
    "auth_user_id": "demo-doctor",
    "name": "Amara Okafor",
    "specialization": "Internal Medicine",
    "license_number": "MD-104233",
    "years_of_experience": 12,
}

DEMO_PATIENT = {
    "auth_user_id": "demo-patient",
    "name": "Samuel Mensah",
    "age": 54,
    "gender": Gender.MALE,
    "phone": "+233 20 555 0142",
    "address": "14 Ring Road, Accra",
    "emergency_contact_name": "Ama Mensah",
    "emergency_contact_phone": "+233 20 555 0177",
    "medical_history": "Hypertension diagnosed 2019",
    "allergies": "Penicillin",
    "current_medications": "Amlodipine 5mg daily",
}

# (days ago, visit fields)
DEMO_VISITS = [
    (
        400,
        {
            "visit_type": VisitType.IN_PERSON,
            "systolic_bp": 152,
            "diastolic_bp": 96,
            "heart_rate": 78,
            "weight": 91.0,
            "height": 176.0,
            "symptoms": "Occasional headaches, mild dizziness on standing",
            "diagnosis": "Stage 2 hypertension",
            "treatment_notes": "Start amlodipine, reduce salt intake",
            "prescribed_medications": "Amlodipine 5mg daily",
            "follow_up_instructions": "Recheck blood pressure in 4 weeks",
            "urgency_level": UrgencyLevel.MEDIUM,
            "confidence_level": ConfidenceLevel.HIGH,
        },
    ),
    (
        180,
        {
            "visit_type": VisitType.FOLLOW_UP,
            "systolic_bp": 138,
            "diastolic_bp": 88,
            "heart_rate": 74,
            "blood_sugar": 132.0,
            "symptoms": "Increased thirst, waking at night to urinate",
            "diagnosis": "Impaired fasting glucose",
            "treatment_notes": "Dietary counselling, increase physical activity",
            "follow_up_instructions": "HbA1c test in 3 months",
            "urgency_level": UrgencyLevel.LOW,
            "confidence_level": ConfidenceLevel.MEDIUM,
        },
    ),
    (
        30,
        {
            "visit_type": VisitType.SELF_RECORDED,
            "blood_sugar": 168.0,
            "weight": 93.5,
            "symptoms": "Tired after meals, blurry vision in the evenings",
        },
    ),
]


async def verify_connection() -> bool:
    """Verify the database connection is working."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        print("  PostgreSQL: connected")
    except Exception as e:
        print(f"  PostgreSQL: FAILED - {e}")
        return False
    return True


async def _get_or_create(session, model, fields: dict):
    result = await session.execute(
        select(model).where(model.auth_user_id == fields["auth_user_id"])
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing, False
    instance = model(**fields)
    session.add(instance)
    await session.flush()
    return instance, True


async def seed_database() -> dict[str, int]:
    """
    Seed the demo records.

    Returns:
        Dictionary with counts: profiles_created, visits_created, visits_embedded.
    """
    stats = {"profiles_created": 0, "visits_created": 0, "visits_embedded": 0}

    print("\nVerifying database connection...")
    if not await verify_connection():
        raise RuntimeError("Database connection verification failed")

    async with async_session_maker() as session:
        doctor, created = await _get_or_create(session, Doctor, DEMO_DOCTOR)
        stats["profiles_created"] += int(created)
        patient, created = await _get_or_create(session, Patient, DEMO_PATIENT)
        stats["profiles_created"] += int(created)

        visit_count = await session.scalar(
            select(func.count()).select_from(Visit).where(Visit.patient_id == patient.id)
        )
        visits: list[Visit] = []
        if not visit_count:
            now = datetime.now(timezone.utc)
            for days_ago, fields in DEMO_VISITS:
                doctor_id = None if fields["visit_type"] is VisitType.SELF_RECORDED else doctor.id
                visit = Visit(
                    patient_id=patient.id,
                    doctor_id=doctor_id,
                    visit_date=now - timedelta(days=days_ago),
                    **fields,
                )
                session.add(visit)
                visits.append(visit)
            await session.flush()
            stats["visits_created"] = len(visits)

        if visits and settings.openai_api_key:
            service = EmbeddingService()
            try:
                for visit in visits:
                    await service.embed_visit(visit)
                    stats["visits_embedded"] += 1
            except EmbeddingUnavailableError as e:
                print(f"  Embeddings skipped: {e}")
            finally:
                await service.close()
        elif visits:
            print("  OPENAI_API_KEY not set - visits stored without embeddings")

        await session.commit()

    print(f"\n  Doctor ID:  {doctor.id}")
    print(f"  Patient ID: {patient.id}")
    return stats


def main() -> None:
    """Main entry point for the seed script."""
    print("=" * 50)
    print("Dr. AI Database Seeding")
    print("=" * 50)

    stats = asyncio.run(seed_database())

    print("\n" + "=" * 50)
    print("Summary")
    print("=" * 50)
    print(f"  Profiles created: {stats['profiles_created']}")
    print(f"  Visits created:   {stats['visits_created']}")
    print(f"  Visits embedded:  {stats['visits_embedded']}")
    print("\nDatabase seeding complete!")


if __name__ == "__main__":
    main()
