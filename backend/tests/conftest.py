import os

# Tests always run against an in-memory SQLite database.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"

import pytest  # noqa: E402

import database.models  # noqa: E402,F401
from database.base import Base, SessionLocal, engine  # noqa: E402
from models.composition_models import (  # noqa: E402
    CompositionDocument,
    CompositionMetadata,
    ELEMENT_ADAPTER,
)
from operators.composition_operator import get_composition_by_project  # noqa: E402
from operators.project_operator import create_project  # noqa: E402


def make_element(element_id: str, element_type: str = "text", **fields):
    data = {"id": element_id, "type": element_type, "from": 0, "durationInFrames": 90}
    data.update(fields)
    return ELEMENT_ADAPTER.validate_python(data)


def make_document(*elements, **metadata) -> CompositionDocument:
    return CompositionDocument(
        id="comp_test",
        version=0,
        metadata=CompositionMetadata(**metadata),
        elements=list(elements),
    )


@pytest.fixture
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def project(db):
    return create_project("Test project", db)


@pytest.fixture
def composition_id(db, project):
    return get_composition_by_project(db, project.project_id).composition_id


@pytest.fixture
def mixed_document():
    return make_document(
        make_element(
            "el_video",
            "video",
            label="Intro",
            properties={"src": "https://cdn.example/intro.mp4", "volume": 1, "x": 10},
        ),
        make_element("el_caption_1", "text", label="Caption", properties={"text": "Hello"}),
        make_element(
            "el_caption_2",
            "text",
            label="caption",
            **{"from": 90, "durationInFrames": 60},
            properties={"text": "World"},
        ),
        make_element("el_plain_text", "text", **{"from": 150}, properties={"text": "Bye"}),
    )
