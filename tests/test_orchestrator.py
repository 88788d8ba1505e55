"""Tests for TaskOrchestrator - submit, sessions and subscriptions."""

import asyncio
from datetime import timedelta

import pytest

from task_orchestrator import (
    InMemoryTaskStore,
    InvalidInputError,
    MQTTChangeFeedStore,
    NoOpBroadcaster,
    Settings,
    TaskNotification,
    TaskOrchestrator,
    TaskRecord,
    TaskStatus,
    TaskType,
)
from tests.helpers import (
    OWNER,
    SAMPLE_INPUT,
    SAMPLE_META,
    TARGET,
    FakeGenerator,
    LoopbackBroadcaster,
    LoopbackBroker,
    make_record,
    wait_until,
)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_runs_task(self, orchestrator: TaskOrchestrator):
        task, created = await orchestrator.submit(
            OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT, SAMPLE_META
        )

        assert created is True
        assert task.status == TaskStatus.pending

        await orchestrator.worker.drain()

        finished = orchestrator.lifecycle.get(OWNER, task.id)
        assert finished.status == TaskStatus.completed
        assert finished.progress == 100

    @pytest.mark.asyncio
    async def test_active_task_reused(self, orchestrator: TaskOrchestrator, generator: FakeGenerator):
        first, created_first = await orchestrator.submit(
            OWNER, TaskType.ats_analysis, TARGET, SAMPLE_INPUT, start=False
        )
        second, created_second = await orchestrator.submit(
            OWNER, TaskType.ats_analysis, TARGET, SAMPLE_INPUT
        )

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_submits_create_one_task(self, orchestrator: TaskOrchestrator):
        results = await asyncio.gather(
            *[
                orchestrator.submit(OWNER, TaskType.cover_letter, TARGET, SAMPLE_INPUT, start=False)
                for _ in range(5)
            ]
        )

        assert sum(created for _, created in results) == 1
        assert len({task.id for task, _ in results}) == 1

    @pytest.mark.asyncio
    async def test_finished_task_not_reused(self, orchestrator: TaskOrchestrator):
        first, _ = await orchestrator.submit(OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT)
        await orchestrator.worker.drain()

        second, created = await orchestrator.submit(OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT)

        assert created is True
        assert second.id != first.id
        await orchestrator.worker.drain()

    @pytest.mark.asyncio
    async def test_invalid_submission(self, orchestrator: TaskOrchestrator):
        with pytest.raises(InvalidInputError):
            _ = await orchestrator.submit(OWNER, TaskType.cv_rewrite, None, SAMPLE_INPUT)

        assert orchestrator.query.list_active(OWNER) == []


class TestSession:
    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_open_session_resumes_and_notifies(
        self, orchestrator: TaskOrchestrator, notifications: list[TaskNotification]
    ):
        task_id = orchestrator.lifecycle.create(
            OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT, SAMPLE_META
        )
        _ = orchestrator.lifecycle.update_progress(OWNER, task_id, 50, 2, "Generating")

        handles = await orchestrator.open_session(OWNER)
        _ = await asyncio.gather(*handles)

        assert len(handles) == 1
        assert [n.task_id for n in notifications] == [task_id]
        assert notifications[0].message == "Your CV for Backend Engineer at Acme is ready"
        assert orchestrator.lifecycle.get(OWNER, task_id).notification_shown is True

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_failed_task_notified_once(
        self,
        orchestrator: TaskOrchestrator,
        generator: FakeGenerator,
        notifications: list[TaskNotification],
    ):
        generator.content = "not json at all"
        _ = await orchestrator.open_session(OWNER)

        task, _ = await orchestrator.submit(OWNER, TaskType.ats_analysis, TARGET, SAMPLE_INPUT)
        await orchestrator.worker.drain()

        assert [(n.task_id, n.kind) for n in notifications] == [(task.id, "error")]
        assert notifications[0].headline == "ATS analysis failed"

    @pytest.mark.asyncio
    async def test_resume_disabled(self, store: InMemoryTaskStore, task_registry, generator: FakeGenerator):
        orchestrator = TaskOrchestrator(store, task_registry, resume_on_start=False)
        _ = orchestrator.lifecycle.create(OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT)

        assert await orchestrator.open_session(OWNER) == []
        assert generator.calls == []
        orchestrator.close_session(OWNER)

    @pytest.mark.asyncio
    async def test_close_session_stops_notifications(
        self, orchestrator: TaskOrchestrator, notifications: list[TaskNotification]
    ):
        _ = await orchestrator.open_session(OWNER)
        orchestrator.close_session(OWNER)

        _, _ = await orchestrator.submit(OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT)
        await orchestrator.worker.drain()

        assert notifications == []

    @pytest.mark.asyncio
    async def test_shutdown_drains_worker(self, orchestrator: TaskOrchestrator):
        task, _ = await orchestrator.submit(OWNER, TaskType.cover_letter, TARGET, SAMPLE_INPUT)

        await orchestrator.shutdown()

        assert orchestrator.lifecycle.get(OWNER, task.id).status == TaskStatus.completed


class TestRestartOverMQTT:
    def process(
        self, broker: LoopbackBroker, task_registry, hold_replay: bool = False
    ) -> tuple[TaskOrchestrator, LoopbackBroadcaster]:
        broadcaster = LoopbackBroadcaster(broker, hold_replay=hold_replay)
        store = MQTTChangeFeedStore(InMemoryTaskStore(), broadcaster, "jobs")
        orchestrator = TaskOrchestrator(store, task_registry)
        _ = store.start()
        return orchestrator, broadcaster

    async def submit_and_stop(self, broker: LoopbackBroker, task_registry) -> TaskRecord:
        first, _ = self.process(broker, task_registry)
        task, _ = await first.submit(OWNER, TaskType.ats_analysis, TARGET, SAMPLE_INPUT, start=False)
        await first.shutdown()
        await asyncio.sleep(0.01)
        return task

    @pytest.mark.asyncio
    async def test_tasks_replayed_after_session_opened_are_resumed(
        self, task_registry, generator: FakeGenerator
    ):
        broker = LoopbackBroker()
        task = await self.submit_and_stop(broker, task_registry)

        second, broadcaster = self.process(broker, task_registry, hold_replay=True)
        handles = await second.open_session(OWNER)
        assert handles == []

        broadcaster.flush()
        await wait_until(lambda: second.lifecycle.get(OWNER, task.id).status == TaskStatus.completed)
        await second.shutdown()

        assert len(generator.calls) == 1

    @pytest.mark.asyncio
    async def test_replayed_tasks_wait_for_a_session(self, task_registry, generator: FakeGenerator):
        broker = LoopbackBroker()
        task = await self.submit_and_stop(broker, task_registry)

        second, broadcaster = self.process(broker, task_registry, hold_replay=True)
        broadcaster.flush()
        await asyncio.sleep(0.01)
        assert generator.calls == []
        assert second.lifecycle.get(OWNER, task.id).status == TaskStatus.pending

        handles = await second.open_session(OWNER)
        _ = await asyncio.gather(*handles)

        assert len(handles) == 1
        assert second.lifecycle.get(OWNER, task.id).status == TaskStatus.completed
        await second.shutdown()

    @pytest.mark.asyncio
    async def test_closed_session_does_not_resume(self, task_registry, generator: FakeGenerator):
        broker = LoopbackBroker()
        task = await self.submit_and_stop(broker, task_registry)

        second, broadcaster = self.process(broker, task_registry, hold_replay=True)
        _ = await second.open_session(OWNER)
        second.close_session(OWNER)
        broadcaster.flush()
        await asyncio.sleep(0.01)

        assert generator.calls == []
        assert second.lifecycle.get(OWNER, task.id).status == TaskStatus.pending


class TestSubscriptions:
    def test_subscribe_active(self, orchestrator: TaskOrchestrator):
        snapshots: list[list[TaskRecord]] = []
        subscription_id = orchestrator.subscribe_active(OWNER, snapshots.append)

        task_id = orchestrator.lifecycle.create(OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT)
        _ = orchestrator.lifecycle.fail(OWNER, task_id, "boom")

        assert [[t.id for t in s] for s in snapshots] == [[], [task_id], []]
        assert orchestrator.unsubscribe(subscription_id) is True

    def test_subscribe_unnotified(self, orchestrator: TaskOrchestrator):
        snapshots: list[list[TaskRecord]] = []
        _ = orchestrator.subscribe_unnotified(OWNER, snapshots.append)

        task_id = orchestrator.lifecycle.create(OWNER, TaskType.cv_rewrite, TARGET, SAMPLE_INPUT)
        _ = orchestrator.lifecycle.complete(OWNER, task_id)
        _ = orchestrator.lifecycle.mark_notified(OWNER, task_id)

        assert [[t.id for t in s] for s in snapshots] == [[], [task_id], []]

    def test_subscribe_recent_excludes_old_tasks(self, orchestrator: TaskOrchestrator):
        old = make_record("cv_rewrite_1_old", status=TaskStatus.completed, age=timedelta(hours=30))
        recent = make_record("cv_rewrite_2_new", status=TaskStatus.completed, age=timedelta(hours=2))
        _ = orchestrator.adapter.create(old)
        _ = orchestrator.adapter.create(recent)
        snapshots: list[list[TaskRecord]] = []

        _ = orchestrator.subscribe_recent(OWNER, snapshots.append)

        assert [[t.id for t in s] for s in snapshots] == [[recent.id]]

    def test_subscribe_recent_limit(self, orchestrator: TaskOrchestrator):
        for i in range(4):
            _ = orchestrator.adapter.create(make_record(f"t{i}", age=timedelta(minutes=10 - i)))
        snapshots: list[list[TaskRecord]] = []

        _ = orchestrator.subscribe_recent(OWNER, snapshots.append, limit=2)

        assert [t.id for t in snapshots[-1]] == ["t0", "t1"]


@pytest.mark.usefixtures("reset_broadcaster")
def test_from_settings_without_mqtt():
    received: list[TaskNotification] = []

    orchestrator = TaskOrchestrator.from_settings(
        Settings(mqtt_url=None, generation_api_key="k", recent_window_hours=6),
        on_notification=received.append,
    )

    assert isinstance(orchestrator.store, MQTTChangeFeedStore)
    assert isinstance(orchestrator.store.broadcaster, NoOpBroadcaster)
    assert set(orchestrator.worker.get_supported_task_types()) == set(TaskType)
    assert orchestrator.adapter.recent_window == timedelta(hours=6)
    assert len(orchestrator.dispatcher.sinks) == 3
    assert orchestrator.notification_center is not None
