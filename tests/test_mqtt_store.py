"""Tests for MQTTChangeFeedStore - sharing task writes between processes."""

from datetime import timedelta

import pytest

from task_orchestrator import (
    InMemoryTaskStore,
    MQTTChangeFeedStore,
    NoOpBroadcaster,
    TaskFilter,
    TaskRecord,
    TaskRecordUpdate,
    TaskStatus,
)
from tests.helpers import OWNER, LoopbackBroadcaster, LoopbackBroker, make_record


@pytest.fixture
def broker() -> LoopbackBroker:
    return LoopbackBroker()


def make_store(broker: LoopbackBroker) -> MQTTChangeFeedStore:
    store = MQTTChangeFeedStore(InMemoryTaskStore(), LoopbackBroadcaster(broker), "jobs")
    assert store.start() is True
    return store


class TestPublishing:
    def test_writes_published_as_retained_records(self, broker: LoopbackBroker):
        store = make_store(broker)
        record = make_record()

        store.put(record.key, record)
        _ = store.update(record.key, TaskRecordUpdate(progress=40, status=TaskStatus.in_progress))

        topic = f"jobs/users/{OWNER}/tasks/{record.id}"
        retained = TaskRecord.model_validate_json(broker.retained[topic])
        assert retained.progress == 40
        assert retained.status == TaskStatus.in_progress

    def test_update_of_missing_record_not_published(self, broker: LoopbackBroker):
        store = make_store(broker)

        assert store.update("users/x/background_tasks/y", TaskRecordUpdate(progress=1)) is None
        assert broker.retained == {}

    def test_reads_delegate_to_inner_store(self, broker: LoopbackBroker):
        store = make_store(broker)
        record = make_record()
        store.put(record.key, record)

        assert store.get(record.key) == store.inner.get(record.key)
        assert [r.id for r in store.query(TaskFilter(owner_id=OWNER))] == [record.id]


class TestRemoteMerge:
    def test_other_process_sees_writes(self, broker: LoopbackBroker):
        first = make_store(broker)
        second = make_store(broker)
        snapshots: list[list[TaskRecord]] = []
        _ = second.subscribe_query(TaskFilter(owner_id=OWNER), snapshots.append)

        record = make_record()
        first.put(record.key, record)
        _ = first.update(
            record.key,
            TaskRecordUpdate(
                status=TaskStatus.completed,
                progress=100,
                updated_at=record.updated_at + timedelta(seconds=1),
            ),
        )

        merged = second.get(record.key)
        assert merged is not None
        assert merged.status == TaskStatus.completed
        assert [[r.status for r in s] for s in snapshots] == [
            [],
            [TaskStatus.pending],
            [TaskStatus.completed],
        ]

    def test_late_starter_receives_retained_state(self, broker: LoopbackBroker):
        first = make_store(broker)
        record = make_record()
        first.put(record.key, record)

        late = make_store(broker)

        assert late.get(record.key) == record

    def test_merged_records_not_republished(self, broker: LoopbackBroker):
        first = make_store(broker)
        second = make_store(broker)
        record = make_record()

        first.put(record.key, record)

        broadcaster = second.broadcaster
        assert isinstance(broadcaster, LoopbackBroadcaster)
        assert broadcaster.published == []

    def test_stale_remote_record_ignored(self, broker: LoopbackBroker):
        store = make_store(broker)
        record = make_record()
        store.put(record.key, record)
        _ = store.update(record.key, TaskRecordUpdate(progress=60))

        stale = record.model_copy(update={"updated_at": record.updated_at - timedelta(minutes=1)})
        store._on_remote_record("jobs/users/u/tasks/t", stale.model_dump_json())  # pyright: ignore[reportPrivateUsage]

        current = store.get(record.key)
        assert current is not None
        assert current.progress == 60

    @pytest.mark.parametrize("payload", ["", "not json", '{"id": "only-id"}'])
    def test_unusable_payload_ignored(self, broker: LoopbackBroker, payload: str):
        store = make_store(broker)

        store._on_remote_record("jobs/users/u/tasks/t", payload)  # pyright: ignore[reportPrivateUsage]

        assert store.query(TaskFilter()) == []

    def test_stop_ends_merging(self, broker: LoopbackBroker):
        first = make_store(broker)
        second = make_store(broker)
        second.stop()

        record = make_record()
        first.put(record.key, record)

        assert second.get(record.key) is None


class TestRecovery:
    def late_store(self, broker: LoopbackBroker) -> tuple[MQTTChangeFeedStore, list[TaskRecord]]:
        recovered: list[TaskRecord] = []
        broadcaster = LoopbackBroadcaster(broker, hold_replay=True)
        store = MQTTChangeFeedStore(InMemoryTaskStore(), broadcaster, "jobs")
        store.add_recovery_listener(recovered.append)
        assert store.start() is True
        broadcaster.flush()
        return store, recovered

    def test_unfinished_records_replayed_after_start_reported(self, broker: LoopbackBroker):
        first = make_store(broker)
        pending = make_record("cv_rewrite_1_pending", age=timedelta(minutes=5))
        running = make_record(
            "cv_rewrite_2_running", status=TaskStatus.in_progress, progress=50, age=timedelta(minutes=5)
        )
        done = make_record("cv_rewrite_3_done", status=TaskStatus.completed, age=timedelta(minutes=5))
        for record in (pending, running, done):
            first.put(record.key, record)

        late, recovered = self.late_store(broker)

        assert {r.id for r in recovered} == {pending.id, running.id}
        assert late.get(done.key) is not None

    def test_live_writes_of_other_processes_not_reported(self, broker: LoopbackBroker):
        first = make_store(broker)
        _, recovered = self.late_store(broker)

        record = make_record()
        first.put(record.key, record)

        assert recovered == []

    def test_failing_listener_does_not_stop_merge(self, broker: LoopbackBroker):
        first = make_store(broker)
        record = make_record(age=timedelta(minutes=5))
        first.put(record.key, record)

        def explode(_record: TaskRecord) -> None:
            raise RuntimeError("listener crashed")

        late = MQTTChangeFeedStore(InMemoryTaskStore(), LoopbackBroadcaster(broker), "jobs")
        late.add_recovery_listener(explode)
        _ = late.start()

        assert late.get(record.key) == record


def test_start_without_broker_feed():
    store = MQTTChangeFeedStore(InMemoryTaskStore(), NoOpBroadcaster())

    assert store.start() is False

    record = make_record()
    store.put(record.key, record)
    assert store.get(record.key) == record
