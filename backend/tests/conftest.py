import os
import tempfile
from pathlib import Path

# Point the app at a throwaway SQLite file before `planner` is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="planner-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("ALLOW_DEFAULT_OWNER", "true")

import pytest
from sqlmodel import SQLModel

from planner import main
from planner.database import engine, create_db_and_tables
from planner.utils.breakdown import FeatureDraft, get_breakdown_generator


class FakeGenerator:
    """Breakdown generator double that records prompts."""

    def __init__(self, drafts=None, error=None):
        self.drafts = list(drafts or [])
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return list(self.drafts)


def make_drafts(n):
    return [
        FeatureDraft(name=f"Feature {i}", description=f"Generated feature number {i}", technical_detail=f"Spec {i}")
        for i in range(1, n + 1)
    ]


@pytest.fixture(autouse=True)
def reset_db():
    """Recreate every table so each test starts from an empty database."""
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    main._generation_rate_limiter.reset()
    yield


@pytest.fixture
def install_generator():
    """Return a function that routes the generator dependency to a fake."""
    def _install(generator):
        main.app.dependency_overrides[get_breakdown_generator] = lambda: generator
        return generator
    yield _install
    main.app.dependency_overrides.pop(get_breakdown_generator, None)
