"""Tests for run state and record schemas."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from repoagent.schemas import (
    Analysis,
    AnalysisOverwriteError,
    RepositoryData,
    RepositoryReport,
    TodoRunState,
)


class TestAppendOnlyRecord:
    def test_fields_are_written_once(self):
        analysis = Analysis()
        analysis.record(activity_score=41)

        with pytest.raises(AnalysisOverwriteError):
            analysis.record(activity_score=50)

        assert analysis.activity_score == 41
        assert analysis.written == frozenset({"activity_score"})

    def test_rejected_write_changes_nothing(self):
        report = RepositoryReport()
        report.record(summary="first")

        with pytest.raises(AnalysisOverwriteError):
            report.record(status="completed", summary="second")

        assert report.status is None
        assert report.summary == "first"

    def test_unknown_field(self):
        with pytest.raises(ValueError, match="Unknown field"):
            Analysis().record(bogus=1)

    def test_each_run_starts_empty(self):
        first = TodoRunState(repository_id="r", user_id="u")
        first.analysis.record(activity_score=10)

        second = TodoRunState(repository_id="r", user_id="u")

        assert second.analysis.activity_score is None
        assert second.analysis.written == frozenset()


class TestRunState:
    def test_inputs_are_immutable(self):
        state = TodoRunState(repository_id="r", user_id="u")

        with pytest.raises(ValidationError):
            state.repository_id = "other"

    def test_defaults(self):
        state = TodoRunState(repository_id="r", user_id="u")

        assert state.phase == "start"
        assert state.step_count == 0
        assert not state.failed
        assert state.elapsed_ms() >= 0


class TestRepositoryData:
    def test_owner_and_repo(self):
        repository = RepositoryData(name="widgets", full_name="acme/widgets")
        assert (repository.owner, repository.repo) == ("acme", "widgets")

    def test_frozen(self):
        repository = RepositoryData(name="widgets", full_name="acme/widgets")
        with pytest.raises(ValidationError):
            repository.stars = 10

    def test_analysis_timestamp_is_timezone_aware(self):
        repository = RepositoryData(name="widgets", full_name="acme/widgets")
        assert repository.analysis_timestamp.utcoffset() == timedelta(0)
