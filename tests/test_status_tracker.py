"""
Tests for run status tracking and execution history.
"""

from datetime import datetime, timedelta

from cloud_bridge.models.core import RunKind, RunState
from cloud_bridge.monitoring.execution_history import ExecutionStatus


class TestRunStatusTracker:
    """Test cases for RunStatusTracker."""

    def test_successful_run(self, discovery_tracker):
        run = discovery_tracker.begin_run("p1", entity_type="aws")
        running = discovery_tracker.get("p1")

        assert running.state == RunState.RUNNING
        assert running.last_start_time is not None
        assert running.last_end_time is None
        assert running.entity_type == "aws"

        status = discovery_tracker.complete_run("p1", run, result_count=3)

        assert status.state == RunState.COMPLETED
        assert status.last_result_count == 3
        assert status.last_end_time >= status.last_start_time
        assert status.last_success_time == status.last_end_time
        assert status.consecutive_failure_count == 0

    def test_failure_counter_resets_on_success(self, discovery_tracker):
        for _ in range(3):
            run = discovery_tracker.begin_run("p1")
            discovery_tracker.fail_run("p1", run, "denied")

        failed = discovery_tracker.get("p1")
        assert failed.state == RunState.FAILED
        assert failed.consecutive_failure_count == 3
        assert failed.last_error_message == "denied"

        run = discovery_tracker.begin_run("p1")
        status = discovery_tracker.complete_run("p1", run, result_count=1)

        assert status.consecutive_failure_count == 0
        assert status.state == RunState.COMPLETED
        # The last error stays visible for diagnosis
        assert status.last_error_message == "denied"

    def test_timestamps_are_monotonic(self, discovery_tracker):
        previous_end = None
        for index in range(5):
            run = discovery_tracker.begin_run("p1")
            if index % 2:
                status = discovery_tracker.fail_run("p1", run, "boom")
            else:
                status = discovery_tracker.complete_run("p1", run, result_count=index)

            assert status.last_end_time >= status.last_start_time
            if previous_end is not None:
                assert status.last_start_time >= previous_end
            previous_end = status.last_end_time

    def test_clock_going_backwards_is_clamped(self, discovery_tracker, mocker):
        run = discovery_tracker.begin_run("p1")
        discovery_tracker.complete_run("p1", run, result_count=0)
        end = discovery_tracker.get("p1").last_end_time

        earlier = end - timedelta(hours=1)
        mocked = mocker.patch("cloud_bridge.monitoring.status_tracker.datetime")
        mocked.now.return_value = earlier

        run = discovery_tracker.begin_run("p1")
        status = discovery_tracker.complete_run("p1", run, result_count=0)

        assert status.last_start_time == end
        assert status.last_end_time == end

    def test_exclusive_run_is_skipped_while_active(self, discovery_tracker, history):
        first = discovery_tracker.begin_run("p1")

        assert discovery_tracker.begin_run("p1", exclusive=True) is None

        discovery_tracker.complete_run("p1", first, result_count=1)
        assert discovery_tracker.begin_run("p1", exclusive=True) is not None

        skipped = history.get_execution_history("p1", status_filter=ExecutionStatus.SKIPPED)
        assert len(skipped) == 1

    def test_overlapping_runs_are_counted(self, collection_tracker):
        first = collection_tracker.begin_run("i-1")
        second = collection_tracker.begin_run("i-1")

        assert collection_tracker.get("i-1").active_runs == 2

        status = collection_tracker.complete_run("i-1", first, result_count=1)
        assert status.state == RunState.RUNNING
        assert status.last_end_time is None

        status = collection_tracker.fail_run("i-1", second, "timeout")
        assert status.state == RunState.FAILED
        assert status.active_runs == 0
        assert status.run_count == 2

    def test_schedule_metadata(self, collection_tracker):
        next_run = datetime.now() + timedelta(minutes=1)
        collection_tracker.mark_scheduled(
            "i-1", timedelta(minutes=1), next_run, "schedule:collection:i-1",
            entity_type="EC2", provider_id="p1"
        )

        status = collection_tracker.get("i-1")
        assert status.state == RunState.SCHEDULED
        assert status.scheduled
        assert status.next_scheduled_run == next_run
        assert status.provider_id == "p1"

        later = next_run + timedelta(minutes=1)
        collection_tracker.update_next_run("i-1", later)
        assert collection_tracker.get("i-1").next_scheduled_run == later

        collection_tracker.mark_unscheduled("i-1")
        status = collection_tracker.get("i-1")
        assert not status.scheduled
        assert status.next_scheduled_run is None
        assert status.state == RunState.PENDING

    def test_disabled_state(self, collection_tracker):
        collection_tracker.mark_unscheduled("i-1", disabled=True)
        assert collection_tracker.get("i-1").state == RunState.DISABLED

    def test_update_next_run_ignores_unknown(self, collection_tracker):
        collection_tracker.update_next_run("i-9", datetime.now())
        assert "i-9" not in collection_tracker

    def test_readers_get_copies(self, discovery_tracker):
        discovery_tracker.begin_run("p1")
        snapshot = discovery_tracker.get("p1")
        snapshot.state = RunState.FAILED

        assert discovery_tracker.get("p1").state == RunState.RUNNING
        assert len(discovery_tracker.all()) == 1

    def test_remove(self, discovery_tracker):
        discovery_tracker.begin_run("p1")
        discovery_tracker.remove("p1")

        assert discovery_tracker.get("p1") is None
        assert len(discovery_tracker) == 0


class TestExecutionHistoryTracker:
    """Test cases for ExecutionHistoryTracker."""

    def test_records_are_bounded(self, history):
        history.max_records_per_entity = 3
        for index in range(5):
            history.start_execution("p1", RunKind.DISCOVERY, f"p1:{index}")
            history.complete_execution(f"p1:{index}", success=True, result_count=index)

        records = history.get_execution_history("p1")
        assert len(records) == 3
        assert [r.result_count for r in records] == [4, 3, 2]

    def test_complete_unknown_execution(self, history):
        assert history.complete_execution("missing", success=True) is None

    def test_statistics_ignore_skipped(self, history):
        history.start_execution("p1", RunKind.DISCOVERY, "p1:1")
        history.complete_execution("p1:1", success=True, result_count=2)
        history.start_execution("p1", RunKind.DISCOVERY, "p1:2")
        history.complete_execution("p1:2", success=False, error="denied")
        history.record_skipped("p1", RunKind.DISCOVERY, "previous run still active")

        stats = history.get_execution_statistics("p1")

        assert stats["total_executions"] == 2
        assert stats["successful_executions"] == 1
        assert stats["success_rate"] == 50.0
        assert stats["total_results"] == 2
        assert len(history.get_recent_failures("p1")) == 1

    def test_filter_by_kind(self, history):
        history.record_skipped("p1", RunKind.DISCOVERY, "busy")
        history.record_skipped("i-1", RunKind.COLLECTION, "busy")

        records = history.get_execution_history(kind=RunKind.COLLECTION)
        assert [r.entity_id for r in records] == ["i-1"]

    def test_same_id_across_kinds_kept_apart(self, history, discovery_tracker, collection_tracker):
        discovery_run = discovery_tracker.begin_run("x")
        collection_run = collection_tracker.begin_run("x")

        discovery_tracker.complete_run("x", discovery_run, result_count=5)
        collection_tracker.complete_run("x", collection_run, result_count=7)

        records = history.get_execution_history("x")
        assert sorted((r.kind.value, r.result_count) for r in records) == [("collection", 7), ("discovery", 5)]
        assert history.get_active_executions() == []
        assert [r.result_count for r in history.get_execution_history("x", kind=RunKind.DISCOVERY)] == [5]

        history.clear("x")
        assert history.get_execution_history("x") == []

    def test_to_dict(self, history):
        history.start_execution("i-1", RunKind.COLLECTION, "i-1:1")
        record = history.complete_execution("i-1:1", success=False, error="throttled")

        data = record.to_dict()
        assert data["kind"] == "collection"
        assert data["status"] == "failure"
        assert data["error"] == "throttled"
        assert data["duration_seconds"] >= 0
