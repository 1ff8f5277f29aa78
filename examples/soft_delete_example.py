#!/usr/bin/env python3
"""
Soft Delete Example - Audit Toolkit

IMPORTANT: This is a demonstration file prioritizing readability over
production readiness. It uses an in-memory SQLite database and prints to the
console instead of handling errors.

Demonstrates the audited record lifecycle:
- Creating records with actor stamps
- Updates bumping the version
- Deletes becoming reversible soft deletes
- Restoring records and purging them for good
- Translating rejected operations into client messages
"""

import asyncio

from sqlalchemy import Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from audit_toolkit import (
    AuditedCollection,
    ForbiddenFieldMutation,
    audited_model,
    translate_exception,
)

Base = declarative_base()

# Example model with audit fields
Patient = audited_model(
    Base,
    "Patient",
    "patients",
    {
        "id": Column(Integer, primary_key=True),
        "patient_code": Column(String(20), nullable=False),
        "site": Column(String(50)),
        "enrollment_date": Column(DateTime),
        "status": Column(String(20), default="enrolled"),
    },
)


def show(label: str, patient) -> None:
    info = patient.audit_info
    print(
        f"  {label:<10} v{info.version} deleted={info.is_deleted} "
        f"updated_by={info.updated_by} deleted_by={info.deleted_by}"
    )


async def main() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()

    patients = AuditedCollection(session, Patient)

    print("1. Enrolling patients")
    await patients.insert_many(
        [
            {"patient_code": "P-001", "site": "Berlin"},
            {"patient_code": "P-002", "site": "Berlin"},
            {"patient_code": "P-003", "site": "Tübingen"},
        ],
        actor="coordinator",
    )
    print(f"  Active patients: {await patients.count()}")

    print("\n2. Updating a record")
    await patients.update_one({"patient_code": "P-001"}, {"status": "screened"}, "nurse")
    show("P-001", await patients.find_one({"patient_code": "P-001"}))

    print("\n3. Withdrawing a patient (soft delete)")
    await patients.delete_one({"patient_code": "P-002"}, actor="investigator")
    print(f"  Active patients: {await patients.count()}")
    print(f"  All patients:    {await patients.count(include_deleted=True)}")
    withdrawn = await patients.find_one({"patient_code": "P-002"}, include_deleted=True)
    show("P-002", withdrawn)

    print("\n4. Rejected write to deletion state")
    try:
        await patients.update_one(
            {"patient_code": "P-002"}, {"deleted_at": None}, include_deleted=True
        )
    except ForbiddenFieldMutation as e:
        payload = translate_exception(e, "en")
        print(f"  {payload.error} {payload.extra_message}")

    print("\n5. Restoring the patient")
    await patients.restore(withdrawn, actor="investigator")
    show("P-002", withdrawn)

    print("\n6. Records by site (deleted records excluded)")
    await patients.delete_one({"patient_code": "P-003"}, actor="investigator")
    print(f"  Sites: {await patients.distinct('site')}")

    print("\n7. Purging withdrawn records")
    removed = await patients.purge_many(Patient.deleted_at.is_not(None))
    print(f"  Physically removed: {removed}")
    print(f"  All patients:       {await patients.count(include_deleted=True)}")

    session.close()


if __name__ == "__main__":
    asyncio.run(main())
