"""Task operations. A user has at most one active task at a time."""

from pomopair.errors import NotFound, ValidationError
from pomopair.models import Task
from pomopair.store import RecordStore


async def list_tasks(store: RecordStore, user_id: str) -> list[Task]:
    return await store.list_tasks(user_id)


async def create_task(store: RecordStore, user_id: str, title: str | None) -> Task:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Task title is required")
    return await store.create_task(user_id, title)


async def activate_task(store: RecordStore, user_id: str, task_id: str) -> Task:
    """Make ``task_id`` the user's only active task.

    Siblings are deactivated first, then the chosen task is activated, as two
    separate writes with no lock held between them.
    """
    task = await store.get_task(task_id, user_id)
    if task is None:
        raise NotFound("Task not found")

    await store.deactivate_tasks(user_id)
    return await store.set_task_active(task.id)


async def delete_task(store: RecordStore, user_id: str, task_id: str) -> None:
    task = await store.get_task(task_id, user_id)
    if task is None:
        raise NotFound("Task not found")
    await store.delete_task(task.id)
