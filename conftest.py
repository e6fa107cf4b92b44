import io
import os
import uuid
from pathlib import Path
from unittest.mock import AsyncMock

# Print EMF metrics to stdout instead of looking for a CloudWatch agent
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")

import fitz
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and DB dependency function first
from main import app
from database import Base, get_db

import models
from auth import caller_for_user
from files import FileStore, get_file_store
from notifier import Notifier, get_notifier
from schemas import FileUpload

ROOT = Path(__file__).resolve().parent
TEST_DATABASE_URL = "sqlite:///./job-board-test.db"

connect_args = (
    {"check_same_thread": False} if TEST_DATABASE_URL.startswith("sqlite") else {}
)
test_engine = create_engine(TEST_DATABASE_URL, connect_args=connect_args)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    if os.path.exists(db_path):
        try:
            os.unlink(db_path)
            print(f"\nRemoved existing test database file: {db_path}")
        except OSError as e:
            print(f"Error removing existing test database file {db_path}: {e}")

    print(f"Creating test database tables from models at {db_path}")
    Base.metadata.create_all(bind=test_engine)

    print("Stamping database with Alembic head revision")
    alembic_cfg = Config(str(ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield  # Tests run here

    test_engine.dispose()
    if os.path.exists(db_path):
        try:
            os.unlink(db_path)
            print(f"Removed test database file: {db_path}")
        except OSError as e:
            print(f"Error removing test database file {db_path}: {e}")


@pytest.fixture(scope="function")
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def session_factory(setup_test_database):
    """The raw session factory, for tests that need one session per thread."""
    return TestSessionLocal


@pytest.fixture(scope="function")
def file_store(tmp_path) -> FileStore:
    return FileStore(tmp_path / "storage")


@pytest.fixture(scope="function")
def mailer() -> AsyncMock:
    return AsyncMock()


@pytest.fixture(scope="function")
def notifier(mailer) -> Notifier:
    return Notifier(mailer=mailer)


# Override the get_db dependency for tests
@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db, file_store, notifier):
    """Provides a test client wired to the test database, a temp file store and a mock mailer."""
    app.dependency_overrides[get_file_store] = lambda: file_store
    app.dependency_overrides[get_notifier] = lambda: notifier

    yield TestClient(app)

    app.dependency_overrides.pop(get_file_store, None)
    app.dependency_overrides.pop(get_notifier, None)


# --- Sample files ---
def make_pdf_bytes(pages: int = 1) -> bytes:
    with fitz.open() as doc:
        for _ in range(pages):
            page = doc.new_page()
            page.insert_text((72, 72), "Curriculum Vitae")
        return doc.tobytes()


def make_image_bytes(fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def pdf_upload() -> FileUpload:
    return FileUpload(filename="resume.pdf", content_type="application/pdf", data=make_pdf_bytes())


@pytest.fixture
def image_upload() -> FileUpload:
    return FileUpload(filename="logo.png", content_type="image/png", data=make_image_bytes())


# --- Entity factories ---
@pytest.fixture
def make_user(db_session):
    def _make_user(role: str = "employee", email: str = None, name: str = "Test") -> models.User:
        user = models.User(
            email=email or f"{role}-{uuid.uuid4().hex[:10]}@example.com",
            name=name,
            lastname="User",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_post(db_session, make_user):
    def _make_post(employer: models.User = None, nr_workers: int = 1, **fields) -> models.Post:
        employer = employer or make_user(role="employer")
        company = db_session.query(models.Company).filter_by(user_id=employer.id).first()
        if company is None:
            company = models.Company(
                user_id=employer.id,
                name=f"{employer.name} Ltd",
                image="company/logo.png",
                description="We hire",
                address="1 Main St",
                phone="555-0100",
                website="https://example.com",
                email=employer.email,
            )
            db_session.add(company)
            db_session.flush()
        post = models.Post(
            user_id=employer.id,
            company_id=company.id,
            title=fields.pop("title", "Warehouse Worker"),
            description=fields.pop("description", "Lifting boxes"),
            nr_workers=nr_workers,
            **fields,
        )
        db_session.add(post)
        db_session.commit()
        db_session.refresh(post)
        return post

    return _make_post


@pytest.fixture
def make_cv(db_session):
    def _make_cv(user: models.User, file: str = None) -> models.CV:
        cv = models.CV(user_id=user.id, file=file or f"cv/{uuid.uuid4().hex}_resume.pdf", original_filename="resume.pdf")
        db_session.add(cv)
        db_session.commit()
        db_session.refresh(cv)
        return cv

    return _make_cv


@pytest.fixture
def applicant(make_user, make_cv) -> models.User:
    """An employee who already uploaded a CV."""
    user = make_user(role="employee")
    make_cv(user)
    return user


@pytest.fixture
def caller_of():
    return caller_for_user
