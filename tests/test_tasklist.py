import asyncio

import pytest

from verbalist.models import TaskRecord
from verbalist.store import InMemoryTaskStore
from verbalist.tasklist import SortPolicy, TaskListModel, is_partitioned, sort_tasks


def _loaded(records, policy=SortPolicy.NEWEST):
    store = InMemoryTaskStore(records)
    model = TaskListModel(store, policy)
    asyncio.run(model.refresh())
    store.calls.clear()
    return model, store


def _titles(model):
    return [task.title for task in model]


@pytest.fixture
def three_open():
    return [
        TaskRecord(id="A", title="Alpha", sort_order=3),
        TaskRecord(id="B", title="Bravo", sort_order=2),
        TaskRecord(id="C", title="Charlie", sort_order=1),
    ]


def test_sort_policies_keep_incomplete_tasks_first():
    tasks = [
        TaskRecord(id="1", title="walk dog", sort_order=1),
        TaskRecord(id="2", title="Buy milk", completed=True, sort_order=5),
        TaskRecord(id="3", title="call mom", sort_order=3),
        TaskRecord(id="4", title="Answer email", completed=True, sort_order=2),
    ]

    newest = sort_tasks(tasks, SortPolicy.NEWEST)
    assert [task.id for task in newest] == ["3", "1", "2", "4"]

    oldest = sort_tasks(tasks, SortPolicy.OLDEST)
    assert [task.id for task in oldest] == ["1", "3", "4", "2"]

    alphabetical = sort_tasks(tasks, SortPolicy.ALPHABETICAL)
    assert [task.id for task in alphabetical] == ["3", "1", "4", "2"]

    partition_only = sort_tasks(tasks, SortPolicy.INCOMPLETE_FIRST)
    assert [task.id for task in partition_only] == ["1", "3", "2", "4"]

    for ordering in (newest, oldest, alphabetical, partition_only):
        assert is_partitioned(ordering)


def test_sort_is_stable_for_equal_sort_orders():
    tasks = [TaskRecord(id=str(n), title=f"Task {n}", sort_order=1) for n in range(5)]
    assert [task.id for task in sort_tasks(tasks)] == ["0", "1", "2", "3", "4"]


def test_refresh_loads_sorted_list(three_open):
    model, _ = _loaded(reversed(three_open))

    assert _titles(model) == ["Alpha", "Bravo", "Charlie"]
    assert model.highest_sort_order == 3
    assert model.partition_boundary == 3


def test_set_sort_policy_resorts_and_notifies(three_open):
    model, _ = _loaded(three_open)
    seen = []
    model.subscribe(lambda tasks: seen.append([task.id for task in tasks]))

    model.set_sort_policy(SortPolicy.OLDEST)

    assert _titles(model) == ["Charlie", "Bravo", "Alpha"]
    assert seen == [["C", "B", "A"]]


def test_assign_new_sort_orders_counts_up_from_highest(three_open):
    model, _ = _loaded(three_open)

    drafts = model.assign_new_sort_orders([TaskRecord.new("One"), TaskRecord.new("Two")])

    assert [draft.sort_order for draft in drafts] == [4, 5]
    assert [draft.title for draft in drafts] == ["One", "Two"]


def test_empty_list_assigns_from_one():
    model = TaskListModel(InMemoryTaskStore())

    assert model.highest_sort_order == 0
    assert [d.sort_order for d in model.assign_new_sort_orders([TaskRecord.new("x")])] == [1]


def test_insert_replace_remove(three_open):
    model, _ = _loaded(three_open)

    model.insert_at_head([TaskRecord(id="D", title="Delta", sort_order=4)])
    assert _titles(model)[0] == "Delta"

    assert model.replace(TaskRecord(id="B", title="Bravo two", sort_order=2)) is True
    assert model.get("B").title == "Bravo two"
    assert model.replace(TaskRecord(id="Z", title="Zulu")) is False

    assert model.remove("A") is True
    assert model.remove("A") is False
    assert model.index_of("A") is None


def test_toggle_moves_task_to_completed_partition_before_store_replies(three_open):
    model, store = _loaded(three_open)
    snapshots = []
    model.subscribe(lambda tasks: snapshots.append([(task.id, task.completed) for task in tasks]))

    saved = asyncio.run(model.toggle_completion("A"))

    assert saved.completed is True
    assert snapshots[0] == [("B", False), ("C", False), ("A", True)]
    assert _titles(model) == ["Bravo", "Charlie", "Alpha"]
    assert model.partition_boundary == 2
    assert store.calls == ["update"]


def test_double_toggle_restores_incomplete_state(three_open):
    model, _ = _loaded(three_open)

    asyncio.run(model.toggle_completion("B"))
    asyncio.run(model.toggle_completion("B"))

    assert model.get("B").completed is False
    assert _titles(model) == ["Alpha", "Bravo", "Charlie"]


def test_failed_toggle_keeps_local_flip(three_open):
    model, store = _loaded(three_open)
    store.fail_ids.add("C")

    assert asyncio.run(model.toggle_completion("C")) is None
    assert model.get("C").completed is True
    assert is_partitioned(model.tasks)


def test_toggle_unknown_task_is_ignored(three_open):
    model, store = _loaded(three_open)

    assert asyncio.run(model.toggle_completion("nope")) is None
    assert store.calls == []


def test_update_recreates_task_missing_from_store(three_open):
    model, store = _loaded(three_open)
    asyncio.run(store.delete("B"))

    saved = asyncio.run(model.update(TaskRecord(id="B", title="Bravo edited", sort_order=2)))

    assert saved.id != "B"
    assert saved.title == "Bravo edited"
    assert model.get("B") is None
    assert model.get(saved.id) is not None
    assert sorted(task.title for task in asyncio.run(store.list())) == ["Alpha", "Bravo edited", "Charlie"]


def test_update_adopts_store_result(three_open):
    model, _ = _loaded(three_open)

    saved = asyncio.run(model.update(TaskRecord(id="C", title="  Charlie edited ", sort_order=1)))

    assert saved.title == "Charlie edited"
    assert model.get("C").title == "Charlie edited"


def test_move_within_incomplete_tasks_rewrites_sort_orders(three_open):
    model, store = _loaded(three_open)

    assert asyncio.run(model.move([2], 0)) is True

    assert _titles(model) == ["Charlie", "Alpha", "Bravo"]
    assert [task.sort_order for task in model] == [3, 2, 1]
    assert store.calls == ["batch_update"]
    stored = {task.id: task.sort_order for task in asyncio.run(store.list())}
    assert stored == {"C": 3, "A": 2, "B": 1}


def test_move_sends_only_changed_records(three_open):
    model, store = _loaded(three_open)
    sent = []
    original = store.batch_update

    async def recording_batch(records):
        sent.extend(record.id for record in records)
        return await original(records)

    store.batch_update = recording_batch

    assert asyncio.run(model.move([0], 2)) is True

    assert _titles(model) == ["Bravo", "Alpha", "Charlie"]
    assert sorted(sent) == ["A", "B"]


def test_move_across_completed_boundary_is_rejected():
    records = [
        TaskRecord(id="A", title="Alpha", sort_order=3),
        TaskRecord(id="B", title="Bravo", sort_order=2),
        TaskRecord(id="C", title="Charlie", completed=True, sort_order=1),
    ]
    model, store = _loaded(records)
    notified = []
    model.subscribe(notified.append)

    assert asyncio.run(model.move([2], 0)) is False

    assert _titles(model) == ["Alpha", "Bravo", "Charlie"]
    assert [task.sort_order for task in model] == [3, 2, 1]
    assert store.calls == []
    assert notified == []


def test_move_out_of_range_is_rejected(three_open):
    model, store = _loaded(three_open)

    assert asyncio.run(model.move([5], 0)) is False
    assert asyncio.run(model.move([], 0)) is False
    assert asyncio.run(model.move([0], 9)) is False
    assert store.calls == []


def test_move_keeps_local_order_when_batch_partially_fails(three_open):
    model, store = _loaded(three_open)
    store.fail_ids.add("A")

    assert asyncio.run(model.move([2], 0)) is True

    assert _titles(model) == ["Charlie", "Alpha", "Bravo"]
    stored = {task.id: task.sort_order for task in asyncio.run(store.list())}
    assert stored == {"A": 3, "B": 1, "C": 3}


def test_delete_and_clear_all(three_open):
    model, store = _loaded(three_open)

    assert asyncio.run(model.delete("A")) is True
    assert model.get("A") is None

    store.fail_ids.add("B")
    assert asyncio.run(model.clear_all()) == 1
    assert _titles(model) == ["Bravo"]


def test_failing_subscriber_does_not_block_others(three_open):
    model, _ = _loaded(three_open)
    received = []

    def broken(tasks):
        raise ValueError("boom")

    model.subscribe(broken)
    unsubscribe = model.subscribe(received.append)

    model.remove("A")
    unsubscribe()
    model.remove("B")

    assert len(received) == 1
    assert [task.id for task in received[0]] == ["B", "C"]
