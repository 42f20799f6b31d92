"""In-memory ordered projection of the remote task list."""

from __future__ import annotations

import dataclasses
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from .models import TaskRecord
from .observers import Subscribers
from .store import NotFound, RemoteStore, StoreError


class SortPolicy(str, Enum):
    """Secondary ordering applied inside the incomplete and completed partitions."""

    NEWEST = "newest"
    OLDEST = "oldest"
    ALPHABETICAL = "alphabetical"
    INCOMPLETE_FIRST = "incomplete_first"


_SORT_KEYS: Dict[SortPolicy, Callable[[TaskRecord], tuple]] = {
    SortPolicy.NEWEST: lambda task: (task.completed, -task.sort_order),
    SortPolicy.OLDEST: lambda task: (task.completed, task.sort_order),
    SortPolicy.ALPHABETICAL: lambda task: (task.completed, task.title.casefold()),
    SortPolicy.INCOMPLETE_FIRST: lambda task: (task.completed,),
}


def sort_tasks(tasks: Iterable[TaskRecord], policy: SortPolicy = SortPolicy.NEWEST) -> List[TaskRecord]:
    """Return ``tasks`` with incomplete tasks first, then ``policy`` order.

    ``INCOMPLETE_FIRST`` only applies the partition and otherwise keeps the
    current order. The sort is stable, so ties keep their input order.
    """

    return sorted(tasks, key=_SORT_KEYS[SortPolicy(policy)])


def is_partitioned(tasks: Sequence[TaskRecord]) -> bool:
    seen_completed = False
    for task in tasks:
        if task.completed:
            seen_completed = True
        elif seen_completed:
            return False
    return True


class TaskListModel:
    """Owns the ordered task list shown to the user.

    Local changes are applied immediately and reconciled with whatever the
    store sends back. Subscribers receive a copy of the list after every
    mutation.
    """

    def __init__(self, store: RemoteStore, policy: SortPolicy = SortPolicy.NEWEST) -> None:
        self._store = store
        self._policy = SortPolicy(policy)
        self._tasks: List[TaskRecord] = []
        self._changes: Subscribers[List[TaskRecord]] = Subscribers()

    @property
    def tasks(self) -> List[TaskRecord]:
        return list(self._tasks)

    @property
    def sort_policy(self) -> SortPolicy:
        return self._policy

    @property
    def partition_boundary(self) -> int:
        """Index of the first completed task (or the list length)."""

        return sum(1 for task in self._tasks if not task.completed)

    @property
    def highest_sort_order(self) -> int:
        return max((task.sort_order for task in self._tasks), default=0)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[TaskRecord]:
        return iter(list(self._tasks))

    def __getitem__(self, index: int) -> TaskRecord:
        return self._tasks[index]

    def subscribe(self, callback: Callable[[List[TaskRecord]], None]) -> Callable[[], None]:
        return self._changes.subscribe(callback)

    def get(self, task_id: str) -> Optional[TaskRecord]:
        index = self.index_of(task_id)
        return None if index is None else self._tasks[index]

    def index_of(self, task_id: str) -> Optional[int]:
        for index, task in enumerate(self._tasks):
            if task.id == task_id:
                return index
        return None

    def set_sort_policy(self, policy: SortPolicy) -> None:
        self._policy = SortPolicy(policy)
        self._apply_sort()
        self._notify()

    def load(self, records: Iterable[TaskRecord]) -> None:
        self._tasks = list(records)
        self._apply_sort()
        self._notify()

    def insert_at_head(self, records: Iterable[TaskRecord]) -> None:
        self._tasks[0:0] = list(records)
        self._apply_sort()
        self._notify()

    def replace(self, record: TaskRecord) -> bool:
        """Overwrite the task with the same id; return False when absent."""

        index = self.index_of(record.id)
        if index is None:
            return False
        self._tasks[index] = record
        self._apply_sort()
        self._notify()
        return True

    def remove(self, task_id: str) -> bool:
        index = self.index_of(task_id)
        if index is None:
            return False
        del self._tasks[index]
        self._notify()
        return True

    def assign_new_sort_orders(self, records: Sequence[TaskRecord]) -> List[TaskRecord]:
        """Give ``records`` sort orders above every existing task, in input order."""

        highest = self.highest_sort_order
        return [
            dataclasses.replace(record, sort_order=highest + offset)
            for offset, record in enumerate(records, start=1)
        ]

    async def refresh(self) -> None:
        self.load(await self._store.list())

    async def update(self, record: TaskRecord) -> TaskRecord:
        """Persist an edited task and adopt the canonical result.

        When the store no longer knows the id, the task is created again under
        a fresh id and the stale entry is dropped from the list.
        """

        try:
            saved = await self._store.update(record)
        except NotFound:
            logging.warning("Task %s not found remotely, creating a new one", record.id)
            fresh = TaskRecord.new(record.title, completed=record.completed, sort_order=record.sort_order)
            saved = await self._store.create(fresh)
            self.remove(record.id)
            self.insert_at_head([saved])
            return saved
        if not self.replace(saved):
            self.insert_at_head([saved])
        return saved

    async def toggle_completion(self, task_id: str) -> Optional[TaskRecord]:
        index = self.index_of(task_id)
        if index is None:
            logging.debug("Toggle ignored, task %s is not in the list", task_id)
            return None

        task = self._tasks[index]
        flipped = dataclasses.replace(task, completed=not task.completed)
        self._tasks[index] = flipped
        self._apply_sort()
        self._notify()

        try:
            return await self.update(flipped)
        except StoreError as exc:
            logging.warning("Error toggling completion of %s: %s", task_id, exc)
            return None

    async def delete(self, task_id: str) -> bool:
        try:
            await self._store.delete(task_id)
        except StoreError as exc:
            logging.warning("Error deleting task %s: %s", task_id, exc)
            return False
        self.remove(task_id)
        return True

    async def clear_all(self) -> int:
        """Delete every task; returns how many deletions succeeded."""

        deleted = 0
        for task in list(self._tasks):
            if await self.delete(task.id):
                deleted += 1
        return deleted

    async def move(self, from_indices: Iterable[int], to_index: int) -> bool:
        """Move the tasks at ``from_indices`` so they land before ``to_index``.

        ``to_index`` is an offset into the list as it was before the move.
        Moves that would mix completed and incomplete tasks are rejected and
        return False without touching the list or the store.
        """

        sources = sorted(set(from_indices))
        count = len(self._tasks)
        if not sources or sources[0] < 0 or sources[-1] >= count or not 0 <= to_index <= count:
            logging.debug("Rejected move %s -> %s: index out of range", sources, to_index)
            return False

        moving = [self._tasks[index] for index in sources]
        skipped = set(sources)
        before = [task for index, task in enumerate(self._tasks[:to_index]) if index not in skipped]
        after = [task for index, task in enumerate(self._tasks) if index >= to_index and index not in skipped]
        reordered = before + moving + after
        if not is_partitioned(reordered):
            logging.debug("Rejected move %s -> %s: crosses the completed boundary", sources, to_index)
            return False

        changed = []
        for index, task in enumerate(reordered):
            new_order = count - index
            if task.sort_order != new_order:
                reordered[index] = dataclasses.replace(task, sort_order=new_order)
                changed.append(reordered[index])
        self._tasks = reordered
        self._notify()

        if not changed:
            return True
        try:
            saved = await self._store.batch_update(changed)
        except StoreError as exc:
            logging.warning("Error saving new task order: %s", exc)
            return True
        if len(saved) < len(changed):
            logging.warning("Saved order for %d of %d tasks", len(saved), len(changed))
        for record in saved:
            index = self.index_of(record.id)
            if index is not None:
                self._tasks[index] = record
        self._notify()
        return True

    def _apply_sort(self) -> None:
        self._tasks = sort_tasks(self._tasks, self._policy)

    def _notify(self) -> None:
        self._changes.notify(list(self._tasks))
