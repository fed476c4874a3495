"""
Pytest configuration and fixtures

Every test gets its own file-backed SQLite database holding the external
relations the workload engine reads (studies, weights/score views,
assignments, coordinator metrics, breakdown view) plus the snapshot table.
Nothing is shared between tests.
"""
import os
import sys
from datetime import date

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Must be set before core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("WORKLOAD_READ_CONCURRENCY", "4")

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from core.database import build_engine, get_db, get_session_factory
from services.workload_schema import detect_workload_schema, reset_workload_schema
from fixtures.workload_db import ALL_RELATIONS, insert_rows, provision, weeks_ago


@pytest.fixture(autouse=True)
def _reset_schema_cache():
    reset_workload_schema()
    yield
    reset_workload_schema()


@pytest.fixture
def make_engine(tmp_path):
    """Factory for provisioned engines; each call gets its own database file."""
    engines = []

    def _make(relations=ALL_RELATIONS, metrics_layout="v2"):
        engine = build_engine(f"sqlite:///{tmp_path / f'workloads_{len(engines)}.db'}")
        provision(engine, relations, metrics_layout)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.dispose()


@pytest.fixture
def workload_engine(make_engine):
    return make_engine()


@pytest.fixture
def session_factory(workload_engine):
    return sessionmaker(bind=workload_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def schema(workload_engine):
    return detect_workload_schema(workload_engine, version_flag="auto")


@pytest.fixture
def scenario(workload_engine):
    """
    Coordinator C1 works only study S1 and reported two weeks inside the window:
    meeting 3h/5h, screening 6h/10h, query 2h/4h (averages 4 / 8 / 3).
    """
    insert_rows(workload_engine, "studies", [
        {
            "id": "S1", "protocol_number": "PRO-001", "study_title": "Cardio Outcomes",
            "lifecycle": "active", "recruitment": "open", "status": "active",
            "meeting_admin_points": 4, "created_at": "2026-01-10 00:00:00",
        },
    ])
    insert_rows(workload_engine, "cwe_weights", [
        {"study_id": "S1", "lifecycle_w": 1, "recruitment_w": 1, "ps": 3, "sm": 1, "qm": 1},
    ])
    insert_rows(workload_engine, "cwe_now", [{"study_id": "S1", "raw_now": 5}])
    insert_rows(workload_engine, "cwe_actuals", [{"study_id": "S1", "raw_actuals": 4}])
    insert_rows(workload_engine, "cwe_forecast_4w", [{"study_id": "S1", "raw_forecast": 6}])
    insert_rows(workload_engine, "study_coordinators", [{"study_id": "S1", "coordinator_id": "C1"}])
    insert_rows(workload_engine, "coordinator_metrics", [
        {
            "coordinator_id": "C1", "week_start": weeks_ago(1), "meeting_hours": 3,
            "screening_hours": 6, "screening_study_count": 0, "query_hours": 2, "query_study_count": 0,
        },
        {
            "coordinator_id": "C1", "week_start": weeks_ago(2), "meeting_hours": 5,
            "screening_hours": 10, "screening_study_count": 0, "query_hours": 4, "query_study_count": 0,
        },
    ])
    return workload_engine


@pytest.fixture
def client(session_factory, schema):
    from main import app
    from routers.workloads import get_schema

    def _override_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_schema] = lambda: schema
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fixed_today():
    # A Wednesday; the current week starts Monday 2026-10-19
    return date(2026, 10, 21)
