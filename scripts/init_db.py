"""
Creates the schema and seeds a demo admin, teacher, two students, one class and its schedule.

    python -m scripts.init_db
"""
import asyncio
import logging

import asyncpg

from geoattend.backend.config.config import settings
from geoattend.backend.db.db_client import AsyncPostgresClient, init_connection
from geoattend.backend.logging.logging_config import setup_logging
from geoattend.backend.models.db_models import ClassInfo, Role, Schedule, UserCredentials
from geoattend.backend.services.auth_service import hash_password

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password"


def demo_users():
    password_hash = hash_password(DEMO_PASSWORD)
    return [
        UserCredentials(id="admin-1", email="admin@campus.edu", name="Demo Admin", role=Role.ADMIN,
                        password_hash=password_hash),
        UserCredentials(id="teacher-1", email="teacher@campus.edu", name="Demo Teacher", role=Role.TEACHER,
                        password_hash=password_hash),
        UserCredentials(id="student-1", email="student1@campus.edu", name="Demo Student 1", role=Role.STUDENT,
                        enrollment_no="2024001", password_hash=password_hash),
        UserCredentials(id="student-2", email="student2@campus.edu", name="Demo Student 2", role=Role.STUDENT,
                        enrollment_no="2024002", password_hash=password_hash),
    ]


async def main() -> None:
    setup_logging(settings.LOG_LEVEL, None)
    pool = await asyncpg.create_pool(dsn=settings.DATABASE_URL, min_size=1, max_size=2, init=init_connection)
    try:
        client = AsyncPostgresClient(pool=pool)
        await client.init_schema()
        await client.add_users(demo_users())
        await client.add_classes([
            ClassInfo(id="class-1", code="CS101", name="Introduction to Computing", room="B-101",
                      teacher_id="teacher-1"),
        ])
        await client.add_schedules([
            Schedule(id="schedule-1", user_id="student-1", class_id="class-1"),
            Schedule(id="schedule-2", user_id="student-2", class_id="class-1"),
        ])
        logger.info(f"OK: schema applied and demo data seeded (password for all demo users: '{DEMO_PASSWORD}').")
    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
