from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskflow.errors import StoreError
from taskflow.notifications.models import (
    DeviceToken,
    DeviceType,
    Notification,
    NotificationPayload,
    NotificationType,
)
from taskflow.repository import TaskflowRepository, WriteBatch
from taskflow.tasks.models import RepeatFrequency, Task, TaskPriority, TaskStatus


def make_notification(
    notification_id: str,
    scheduled_for: datetime,
    *,
    owner_id: str = "user-1",
    task_id: str = "task-1",
    sent: bool = False,
    sent_at: datetime | None = None,
) -> Notification:
    return Notification(
        notification_id=notification_id,
        owner_id=owner_id,
        task_id=task_id,
        type=NotificationType.DEADLINE_REMINDER,
        scheduled_for=scheduled_for,
        payload=NotificationPayload(title="Task Reminder", body="body"),
        sent=sent,
        sent_at=sent_at,
    )


@pytest.mark.anyio
async def test_task_roundtrip(repository):
    due = datetime(2024, 3, 1, 17, 30, tzinfo=timezone.utc)
    task = await repository.create_task(
        Task(
            owner_id="user-1",
            title="Water plants",
            start_date="2024-03-01",
            description="Balcony",
            tags={"home", "garden"},
            priority=TaskPriority.HIGH,
            due_date=due,
            is_repeating=True,
            repeat_frequency=RepeatFrequency.WEEKLY,
            repeat_end_date="2024-06-01",
            deleted_occurrences={"2024-03-08"},
        )
    )

    assert task.id
    assert task.created_at is not None

    loaded = await repository.get_task("user-1", task.id)

    assert loaded is not None
    assert loaded.tags == {"home", "garden"}
    assert loaded.priority is TaskPriority.HIGH
    assert loaded.due_date == due
    assert loaded.is_repeating is True
    assert loaded.repeat_frequency is RepeatFrequency.WEEKLY
    assert loaded.deleted_occurrences == {"2024-03-08"}
    assert loaded.status is TaskStatus.TODO
    assert await repository.get_task("user-2", task.id) is None


@pytest.mark.anyio
async def test_create_task_if_absent_inserts_once(repository):
    task = Task(id="occ-1", owner_id="user-1", title="Stretch", start_date="2024-01-01")

    assert await repository.create_task_if_absent(task) is True

    task.title = "Changed"
    assert await repository.create_task_if_absent(task) is False

    stored = await repository.get_task("user-1", "occ-1")
    assert stored is not None
    assert stored.title == "Stretch"


@pytest.mark.anyio
async def test_list_tasks_includes_deleted_rows(repository):
    await repository.create_task(
        Task(owner_id="user-1", title="b", start_date="2024-01-02", id="b")
    )
    await repository.create_task(
        Task(owner_id="user-1", title="a", start_date="2024-01-01", id="a", is_deleted=True)
    )
    await repository.create_task(
        Task(owner_id="user-2", title="c", start_date="2024-01-01", id="c")
    )

    tasks = await repository.list_tasks("user-1")

    assert [t.id for t in tasks] == ["a", "b"]
    assert tasks[0].is_deleted is True


@pytest.mark.anyio
async def test_find_occurrence_matches_repeating_instance(repository):
    await repository.create_task(
        Task(
            id="t1",
            owner_id="user-1",
            title="Water plants",
            start_date="2024-01-05",
            is_repeating=True,
            repeat_frequency=RepeatFrequency.DAILY,
        )
    )

    found = await repository.find_occurrence(
        "user-1", "Water plants", "2024-01-05", RepeatFrequency.DAILY
    )

    assert found is not None and found.id == "t1"
    assert (
        await repository.find_occurrence(
            "user-1", "Water plants", "2024-01-05", RepeatFrequency.WEEKLY
        )
        is None
    )
    assert (
        await repository.find_occurrence(
            "user-1", "Water plants", "2024-01-06", RepeatFrequency.DAILY
        )
        is None
    )


@pytest.mark.anyio
async def test_commit_splits_large_batches(tmp_path):
    repo = TaskflowRepository(tmp_path / "chunks.db", max_batch_ops=2)
    await repo.initialize()
    try:
        batch = repo.batch()
        for index in range(5):
            batch.create_task_if_absent(
                Task(
                    id=f"t{index}",
                    owner_id="user-1",
                    title=f"task {index}",
                    start_date="2024-01-01",
                )
            )

        applied = await repo.commit(batch)

        assert applied == 5
        assert batch.created == ["t0", "t1", "t2", "t3", "t4"]
        assert len(await repo.list_tasks("user-1")) == 5
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_failed_chunk_is_rolled_back(tmp_path):
    repo = TaskflowRepository(tmp_path / "rollback.db", max_batch_ops=10)
    await repo.initialize()
    try:
        batch = repo.batch()
        batch.set_task(Task(id="ok", owner_id="user-1", title="ok", start_date="2024-01-01"))
        batch.set_task(Task(id="bad", owner_id="user-1", title=None, start_date="2024-01-01"))  # type: ignore[arg-type]

        with pytest.raises(StoreError):
            await repo.commit(batch)

        assert await repo.list_tasks("user-1") == []
    finally:
        await repo.close()


def test_update_rejects_unknown_columns():
    batch = WriteBatch()

    with pytest.raises(ValueError):
        batch.update_task("user-1", "t1", colour="red")


@pytest.mark.anyio
async def test_due_notifications_ordered_and_limited(repository):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    batch = repository.batch()
    batch.set_notification(make_notification("late", now - timedelta(minutes=1)))
    batch.set_notification(make_notification("early", now - timedelta(hours=2)))
    batch.set_notification(make_notification("exact", now))
    batch.set_notification(make_notification("future", now + timedelta(seconds=1)))
    batch.set_notification(
        make_notification("done", now - timedelta(hours=3), sent=True, sent_at=now)
    )
    await repository.commit(batch)

    due = await repository.find_due_notifications(now, limit=10)
    assert [n.notification_id for n in due] == ["early", "late", "exact"]

    limited = await repository.find_due_notifications(now, limit=2)
    assert [n.notification_id for n in limited] == ["early", "late"]


@pytest.mark.anyio
async def test_notification_payload_roundtrip(repository):
    scheduled = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    notification = make_notification("n1", scheduled)
    notification.payload = NotificationPayload(
        title="Task Reminder",
        body='"Pay rent" is due in 15 minutes! ⏰',
        data={"taskId": "task-1", "reminderMinutes": "15"},
        icon="📋",
    )
    batch = repository.batch()
    batch.set_notification(notification)
    await repository.commit(batch)

    loaded = await repository.get_notification("n1")

    assert loaded is not None
    assert loaded.scheduled_for == scheduled
    assert loaded.payload == notification.payload
    assert loaded.sent is False
    assert loaded.retry_count == 0


@pytest.mark.anyio
async def test_expired_notifications_only_include_sent(repository):
    cutoff = datetime(2024, 5, 1, tzinfo=timezone.utc)
    batch = repository.batch()
    batch.set_notification(
        make_notification(
            "old", cutoff - timedelta(days=2), sent=True, sent_at=cutoff - timedelta(days=1)
        )
    )
    batch.set_notification(
        make_notification(
            "recent", cutoff, sent=True, sent_at=cutoff + timedelta(days=1)
        )
    )
    batch.set_notification(make_notification("pending", cutoff - timedelta(days=5)))
    await repository.commit(batch)

    expired = await repository.find_expired_notifications(cutoff, limit=10)

    assert [n.notification_id for n in expired] == ["old"]


@pytest.mark.anyio
async def test_tokens_looked_up_by_value_across_owners(repository):
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for owner in ("user-1", "user-2"):
        await repository.upsert_device_token(
            DeviceToken(owner_id=owner, token="shared", created_at=now, last_used=now)
        )
    await repository.upsert_device_token(
        DeviceToken(
            owner_id="user-1",
            token="phone",
            device_type=DeviceType.ANDROID,
            is_active=False,
            created_at=now,
        )
    )

    shared = await repository.find_tokens_by_value("shared")
    active = await repository.list_active_tokens("user-1")

    assert sorted(t.owner_id for t in shared) == ["user-1", "user-2"]
    assert [t.token for t in active] == ["shared"]

    phone = await repository.get_device_token("user-1", "phone")
    assert phone is not None
    assert phone.device_type is DeviceType.ANDROID
    assert phone.is_active is False
