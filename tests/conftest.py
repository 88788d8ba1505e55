"""Test configuration and fixtures for task_orchestrator.

This module provides:
- A deterministic generator standing in for the AI endpoint
- Store, adapter, lifecycle and worker wiring over the in-memory store
- A notification dispatcher and orchestrator that record what they emit
"""

import pytest

from task_orchestrator import (
    CallbackSink,
    InMemoryTaskStore,
    NotificationCenter,
    NotificationDispatcher,
    TaskLifecycleManager,
    TaskNotification,
    TaskOrchestrator,
    TaskStoreAdapter,
    Worker,
)
from task_orchestrator.plugins.ats_analysis import ATSAnalysisTask
from task_orchestrator.plugins.cover_letter import CoverLetterTask
from task_orchestrator.plugins.cv_rewrite import CVRewriteTask
from task_orchestrator.utils.mqtt import shutdown_broadcaster
from tests.helpers import FakeGenerator

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: full path from submit through worker to notification",
    )


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def adapter(store: InMemoryTaskStore) -> TaskStoreAdapter:
    return TaskStoreAdapter(store)


@pytest.fixture
def task_registry(generator: FakeGenerator):
    """Every built-in task module, wired to the fake generator."""
    modules = (
        CVRewriteTask(generator=generator),
        ATSAnalysisTask(generator=generator),
        CoverLetterTask(generator=generator),
    )
    return {module.task_type: module for module in modules}


@pytest.fixture
def lifecycle(adapter: TaskStoreAdapter, task_registry) -> TaskLifecycleManager:
    return TaskLifecycleManager(adapter, task_registry)


@pytest.fixture
def worker(lifecycle: TaskLifecycleManager, task_registry) -> Worker:
    return Worker(lifecycle, task_registry)


@pytest.fixture
def notifications() -> list[TaskNotification]:
    """Collects every notification emitted through a CallbackSink."""
    return []


@pytest.fixture
def dispatcher(lifecycle: TaskLifecycleManager, notifications: list[TaskNotification]):
    dispatcher = NotificationDispatcher(lifecycle, [CallbackSink(notifications.append)])
    yield dispatcher
    dispatcher.stop()


@pytest.fixture
def notification_center() -> NotificationCenter:
    return NotificationCenter()


@pytest.fixture
def orchestrator(
    store: InMemoryTaskStore,
    task_registry,
    notifications: list[TaskNotification],
    notification_center: NotificationCenter,
):
    orchestrator = TaskOrchestrator(
        store,
        task_registry,
        [CallbackSink(notifications.append)],
        notification_center=notification_center,
    )
    yield orchestrator
    orchestrator.dispatcher.stop()


@pytest.fixture
def reset_broadcaster():
    """Tear down the process-wide broadcaster after the test."""
    yield
    shutdown_broadcaster()
