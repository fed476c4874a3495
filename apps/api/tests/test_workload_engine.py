"""
Batch computation tests: concurrent base reads, defaults for absent relations,
the weights short-circuit and transient failures.
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy import text

from services.workload_engine import _run_concurrently, compute_workloads
from services.workload_repositories import WorkloadQueryError
from services.workload_schema import detect_workload_schema
from services.workload_types import StudyMeta
from fixtures.workload_db import insert_rows


S1 = StudyMeta(id="S1", protocol_number="PRO-001", title="Cardio Outcomes",
               lifecycle="active", recruitment="open", status="active", meeting_admin_points=4)


class TestComputeWorkloads:

    def test_end_to_end_scenario(self, scenario, session_factory, schema):
        workloads = compute_workloads(session_factory, schema, [S1])

        assert len(workloads) == 1
        workload = workloads[0]
        assert workload.study_id == "S1"
        assert workload.metrics.contributors == 1
        assert workload.metrics.entries == 2
        assert workload.metrics.avg_meeting_hours == 4.0
        assert workload.metrics.avg_screening_hours == 8.0
        assert workload.metrics.avg_query_hours == 3.0
        assert workload.metrics.screening_scale == 1.8
        assert workload.metrics.query_scale == 1.0
        assert workload.metrics.meeting_points_adjustment == 8.0
        assert workload.now.raw == 13.0
        assert workload.now.weighted == 23.4
        assert workload.actuals.weighted == 7.2
        assert workload.forecast.weighted == 10.8
        assert workload.meeting_admin_points_adjusted == 12.0
        assert workload.protocol_score == 3.0

    def test_results_follow_input_order(self, scenario, session_factory, schema):
        studies = [StudyMeta(id="S9"), S1, StudyMeta(id="S5")]
        workloads = compute_workloads(session_factory, schema, studies)
        assert [w.study_id for w in workloads] == ["S9", "S1", "S5"]

    def test_study_without_rows_gets_defaults(self, scenario, session_factory, schema):
        workload = compute_workloads(session_factory, schema, [StudyMeta(id="S9", status="closed")])[0]

        assert workload.lifecycle_weight == 1.0
        assert workload.now.raw == 0.0
        assert workload.metrics.contributors == 0
        assert workload.recruitment == "closed"

    def test_serial_reads_match_concurrent_reads(self, scenario, session_factory, schema, monkeypatch):
        from core.config import settings
        concurrent = compute_workloads(session_factory, schema, [S1])
        monkeypatch.setattr(settings, "WORKLOAD_READ_CONCURRENCY", 1)
        serial = compute_workloads(session_factory, schema, [S1])
        assert serial == concurrent

    def test_no_studies_no_reads(self, session_factory, schema):
        factory = MagicMock()
        assert compute_workloads(factory, schema, []) == []
        factory.assert_not_called()

    def test_weights_not_provisioned_returns_empty(self, make_engine):
        from sqlalchemy.orm import sessionmaker
        engine = make_engine(relations=("cwe_now", "cwe_actuals", "study_coordinators", "coordinator_metrics"))
        schema = detect_workload_schema(engine, version_flag="auto")
        insert_rows(engine, "cwe_now", [{"study_id": "S1", "raw_now": 10}])

        assert compute_workloads(sessionmaker(bind=engine), schema, [S1]) == []

    def test_missing_optional_relations_degrade_to_defaults(self, make_engine):
        from sqlalchemy.orm import sessionmaker
        engine = make_engine(relations=("cwe_weights",))
        schema = detect_workload_schema(engine, version_flag="auto")
        insert_rows(engine, "cwe_weights", [
            {"study_id": "S1", "lifecycle_w": 2, "recruitment_w": 1, "ps": 0, "sm": 1, "qm": 1},
        ])

        workloads = compute_workloads(sessionmaker(bind=engine), schema, [S1])

        assert len(workloads) == 1
        assert workloads[0].lifecycle_weight == 2.0
        assert workloads[0].now.raw == 0.0
        assert workloads[0].metrics.contributors == 0

    def test_transient_failure_aborts_batch(self, scenario, session_factory, schema):
        with scenario.begin() as conn:
            conn.execute(text("DROP TABLE cwe_actuals"))

        with pytest.raises(WorkloadQueryError) as exc_info:
            compute_workloads(session_factory, schema, [S1])
        assert exc_info.value.source == "cwe_actuals"


class TestRunConcurrently:

    def test_collects_results_by_name(self):
        assert _run_concurrently({"a": lambda: 1, "b": lambda: 2}, max_workers=2) == {"a": 1, "b": 2}

    def test_first_failure_propagates(self):
        def boom():
            raise WorkloadQueryError("cwe_now", ["S1"])

        with pytest.raises(WorkloadQueryError):
            _run_concurrently({"ok": lambda: 1, "bad": boom}, max_workers=2)
