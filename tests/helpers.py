"""Shared test data and doubles."""

import asyncio
import json
from datetime import timedelta
from typing import override
from uuid import uuid4

from task_orchestrator.common.schema_task_record import TaskRecord, TaskStatus, TaskType, utc_now
from task_orchestrator.generation import ArtifactGenerator
from task_orchestrator.utils.mqtt import BroadcasterBase, topic_matches
from task_orchestrator.utils.mqtt.mqtt_impl import MessageCallback

OWNER = "user-1"
OTHER_OWNER = "user-2"
TARGET = "analysis-42"

SAMPLE_INPUT = {
    "cv_text": "Jane Doe. Backend developer, 6 years of Python and PostgreSQL.",
    "job_title": "Backend Engineer",
    "company": "Acme",
    "job_description": "We are looking for a backend engineer fluent in Python, FastAPI and SQL.",
}
SAMPLE_META = {"title": "Backend Engineer", "company": "Acme"}

# One payload that every built-in task can parse; each output model ignores
# the fields it does not declare.
GENERATED_ARTIFACT = json.dumps(
    {
        "summary": "Backend engineer with six years of Python.",
        "experiences": [
            {"title": "Backend Developer", "company": "Initech", "bullets": ["Built APIs"]}
        ],
        "skills": ["Python", "FastAPI"],
        "match_score": 72,
        "matched_keywords": ["Python", "SQL"],
        "missing_keywords": ["FastAPI"],
        "recommendations": ["Mention FastAPI projects"],
        "subject": "Application for Backend Engineer",
        "body": "Dear hiring team, I would like to apply.",
    }
)


class FakeGenerator(ArtifactGenerator):
    """Deterministic generator.

    Set ``gate`` to an asyncio.Event to hold every call until it is set.
    """

    def __init__(self, content: str = GENERATED_ARTIFACT, error: Exception | None = None):
        self.content: str = content
        self.error: Exception | None = error
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []

    @override
    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        response_format: str = "json",
    ) -> str:
        self.calls.append(prompt)
        if self.gate is not None:
            _ = await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.content


_SAMPLE = object()


def make_record(
    task_id: str = "cv_rewrite_1_abc",
    *,
    owner_id: str = OWNER,
    task_type: TaskType = TaskType.cv_rewrite,
    status: TaskStatus = TaskStatus.pending,
    target_id: str | None = TARGET,
    input_snapshot: dict | None | object = _SAMPLE,
    age: timedelta = timedelta(0),
    **fields,
) -> TaskRecord:
    created_at = utc_now() - age
    return TaskRecord(
        id=task_id,
        owner_id=owner_id,
        type=task_type,
        status=status,
        target_id=target_id,
        input_snapshot=dict(SAMPLE_INPUT) if input_snapshot is _SAMPLE else input_snapshot,
        created_at=created_at,
        updated_at=created_at,
        **fields,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


class LoopbackBroker:
    """Retained-message broker shared by several in-process broadcasters."""

    def __init__(self):
        self.retained: dict[str, str] = {}
        self.subscribers: dict[str, tuple[str, MessageCallback]] = {}

    def publish(self, topic: str, payload: str, retain: bool) -> None:
        if retain:
            if payload:
                self.retained[topic] = payload
            else:
                _ = self.retained.pop(topic, None)
        for pattern, callback in list(self.subscribers.values()):
            if topic_matches(pattern, topic):
                callback(topic, payload)


class LoopbackBroadcaster(BroadcasterBase):
    """Broadcaster over a LoopbackBroker.

    With ``hold_replay`` the retained messages matching a new subscription
    are queued until flush(), the way a real broker delivers them after
    subscribe() has returned.
    """

    def __init__(self, broker: LoopbackBroker, hold_replay: bool = False):
        super().__init__()
        self.broker: LoopbackBroker = broker
        self.connected = True
        self.published: list[tuple[str, str]] = []
        self.hold_replay: bool = hold_replay
        self.held: list[tuple[MessageCallback, str, str]] = []

    @override
    def publish_retained(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        self.published.append((topic, payload))
        self.broker.publish(topic, payload, retain=True)
        return True

    @override
    def clear_retained(self, topic: str, qos: int = 1) -> bool:
        return self.publish_retained(topic=topic, payload="", qos=qos)

    @override
    def subscribe(self, *, topic: str, callback: MessageCallback, qos: int = 1) -> str | None:
        subscription_id = str(uuid4())
        self.broker.subscribers[subscription_id] = (topic, callback)
        for retained_topic, payload in list(self.broker.retained.items()):
            if not topic_matches(topic, retained_topic):
                continue
            if self.hold_replay:
                self.held.append((callback, retained_topic, payload))
            else:
                callback(retained_topic, payload)
        return subscription_id

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        return self.broker.subscribers.pop(subscription_id, None) is not None

    def flush(self) -> None:
        held, self.held = self.held, []
        for callback, topic, payload in held:
            callback(topic, payload)
