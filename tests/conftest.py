import os
import tempfile
import uuid
from datetime import date
from types import SimpleNamespace
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="bulk-exports-"))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.models import (
    AcademicYear,
    Branch,
    SchoolClass,
    Section,
    Student,
    StudentAddress,
    StudentEnrollment,
    StudentGuardian,
    Tenant,
)
from app.db.session import Base, get_db
from app.main import app


SCHEMAS = ("core", "school")


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite DB with core and school attached as schemas."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'main.db'}", echo=False, future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def _attach_schemas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        for schema in SCHEMAS:
            cursor.execute(f"ATTACH DATABASE '{tmp_path / (schema + '.db')}' AS {schema}")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session
    app.dependency_overrides.pop(get_db, None)


async def add_student(
    db: AsyncSession,
    school: SimpleNamespace,
    admission_number: str,
    first_name: str,
    last_name: str,
    status: str = "active",
    with_guardian: bool = True,
    with_address: bool = True,
    with_enrollment: bool = True,
) -> uuid.UUID:
    student = Student(
        id=uuid.uuid4(),
        tenant_id=school.tenant_id,
        branch_id=school.branch_id,
        admission_number=admission_number,
        first_name=first_name,
        last_name=last_name,
        date_of_birth=date(2015, 6, 15),
        gender="male",
        phone="9000000001",
        email=f"{first_name.lower()}@example.com",
        status=status,
        admission_date=date(2024, 4, 1),
    )
    db.add(student)
    await db.flush()
    if with_guardian:
        db.add(
            StudentGuardian(
                tenant_id=school.tenant_id,
                student_id=student.id,
                relation="father",
                first_name="Robert",
                last_name=last_name,
                phone="9876543210",
                email="robert@example.com",
                is_primary=True,
            )
        )
    if with_address:
        db.add(
            StudentAddress(
                tenant_id=school.tenant_id,
                student_id=student.id,
                address_type="current",
                address_line1="123 Main Street",
                address_line2="Apt 4B",
                city="Mumbai",
                state="Maharashtra",
                postal_code="400001",
            )
        )
    if with_enrollment:
        db.add(
            StudentEnrollment(
                tenant_id=school.tenant_id,
                student_id=student.id,
                academic_year_id=school.year_id,
                class_id=school.class5_id,
                section_id=school.class5_a_id,
                roll_number="7",
                status="active",
            )
        )
    student_id = student.id
    await db.commit()
    return student_id


@pytest.fixture()
async def school(db_session: AsyncSession) -> SimpleNamespace:
    """One tenant with a branch, the current academic year, Class 5 (A, B) and Class 6 (A)."""
    tenant = Tenant(id=uuid.uuid4(), organization_code="SCH-TEST", organization_name="Test School")
    db_session.add(tenant)
    await db_session.flush()

    branch = Branch(id=uuid.uuid4(), tenant_id=tenant.id, name="Main Campus", code="MAIN")
    year = AcademicYear(
        id=uuid.uuid4(),
        tenant_id=tenant.id,
        name="2024-2025",
        start_date=date(2024, 4, 1),
        end_date=date(2025, 3, 31),
        is_current=True,
    )
    class5 = SchoolClass(id=uuid.uuid4(), tenant_id=tenant.id, name="Class 5", display_order=5)
    class6 = SchoolClass(id=uuid.uuid4(), tenant_id=tenant.id, name="Class 6", display_order=6)
    db_session.add_all([branch, year, class5, class6])
    await db_session.flush()

    class5_a = Section(id=uuid.uuid4(), tenant_id=tenant.id, class_id=class5.id, academic_year_id=year.id, name="Section A")
    class5_b = Section(id=uuid.uuid4(), tenant_id=tenant.id, class_id=class5.id, academic_year_id=year.id, name="Section B")
    class6_a = Section(id=uuid.uuid4(), tenant_id=tenant.id, class_id=class6.id, academic_year_id=year.id, name="Section A")
    db_session.add_all([class5_a, class5_b, class6_a])
    await db_session.commit()

    user = CurrentUser(
        id=uuid.uuid4(),
        tenant_id=tenant.id,
        role="ADMIN",
        permissions={"students": {"read": True, "create": True, "update": True}},
        academic_year_id=year.id,
    )
    # Plain ids only: ORM instances are expired by any rollback a test triggers.
    return SimpleNamespace(
        tenant_id=tenant.id,
        branch_id=branch.id,
        year_id=year.id,
        class5_id=class5.id,
        class6_id=class6.id,
        class5_a_id=class5_a.id,
        class5_b_id=class5_b.id,
        class6_a_id=class6_a.id,
        user=user,
    )


@pytest.fixture()
async def client(db_session: AsyncSession, school: SimpleNamespace) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, authenticated as the school's admin."""
    app.dependency_overrides[get_current_user] = lambda: school.user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
def make_student(db_session: AsyncSession, school: SimpleNamespace):
    """Factory: create a student (with guardian, current address and active enrollment by default); returns its id."""

    async def _make(admission_number: str, first_name: str, last_name: str, **kwargs) -> uuid.UUID:
        return await add_student(db_session, school, admission_number, first_name, last_name, **kwargs)

    return _make
