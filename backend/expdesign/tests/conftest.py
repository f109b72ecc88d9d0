import os
os.environ["TESTING"] = "1"
os.environ.setdefault("LOG_FORMAT", "plain")
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from expdesign.main import app
from expdesign.database import Base, get_db
from expdesign.services import design_store, publishing

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def new_user_id(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


def design_fields(**overrides) -> dict:
    fields = {
        "title": "Effect of light on seed germination",
        "summary": "Compare germination rates under three light regimes.",
        "hypothesis": "More light speeds germination.",
        "discipline_tags": ["biology"],
        "difficulty_level": "High School",
        "materials": [
            {"material_id": "mat-seeds", "quantity": "60 seeds"},
            {"material_id": "mat-trays", "quantity": "3 trays"},
        ],
        "steps": [
            {"instruction": "Soak seeds overnight"},
            {"instruction": "Plant 20 seeds per tray"},
            {"instruction": "Count sprouts daily"},
        ],
        "research_questions": [{"question": "Does light level change germination time?"}],
        "independent_variables": [{"name": "light level", "type": "categorical"}],
        "dependent_variables": [{"name": "days to sprout"}],
        "safety_considerations": "Wash hands after handling soil.",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def published_design(db):
    """A design published once by a fresh author; returns (design, author_id)."""

    author = new_user_id("author")
    design = design_store.create_draft(db, author, design_fields())
    publishing.publish(db, design.id, author)
    db.commit()
    return design, author
