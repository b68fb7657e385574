import sqlite3
from datetime import date

import pytest

from daygrid_client.backends import LocalBackend
from daygrid_client.local_store import LocalStore
from daygrid_client.store import TaskStore

MARCH = date(2024, 3, 1)


async def make_store(gateway, local_store, notices=None):
    store = TaskStore(gateway, local_store, notify=(notices.append if notices is not None else None), anchor=MARCH)
    await store.initialize()
    return store


@pytest.mark.asyncio
async def test_buy_milk_scenario(gateway, local_store):
    store = await make_store(gateway, local_store)
    assert not store.backend.is_remote

    assert await store.add_task('2024-03-05', 'Buy milk') is True
    tasks = store.tasks_for('2024-03-05')
    assert len(tasks) == 1
    assert tasks[0].text == 'Buy milk'
    assert tasks[0].done is False

    assert await store.toggle_task('2024-03-05', tasks[0].id) is True
    assert store.tasks_for('2024-03-05')[0].done is True
    assert store.completed_count('2024-03-05') == 1

    assert await store.delete_task('2024-03-05', tasks[0].id) is True
    assert store.tasks_for('2024-03-05') == []
    # nothing reached the remote side
    assert gateway.insert_calls == []


@pytest.mark.asyncio
async def test_blank_text_is_a_no_op(gateway, local_store):
    store = await make_store(gateway, local_store)
    before = dict(store.snapshot)
    assert await store.add_task('2024-03-05', '   ') is False
    assert await store.add_task('2024-03-05', '') is False
    assert await store.add_task_to_dates(['2024-03-05', '2024-03-06'], '\t\n') is False
    assert store.snapshot == before
    assert local_store.load_tasks() == {}


@pytest.mark.asyncio
async def test_text_is_trimmed_and_invalid_key_rejected(gateway, local_store):
    store = await make_store(gateway, local_store)
    assert await store.add_task('2024-02-30', 'nope') is False
    assert await store.add_task('2024-03-05', '  Call mom  ') is True
    assert store.tasks_for('2024-03-05')[0].text == 'Call mom'


@pytest.mark.asyncio
async def test_insertion_order_is_kept(gateway, local_store):
    store = await make_store(gateway, local_store)
    for text in ('first', 'second', 'third'):
        await store.add_task('2024-03-05', text)
    assert [t.text for t in store.tasks_for('2024-03-05')] == ['first', 'second', 'third']


@pytest.mark.asyncio
async def test_add_to_dates(gateway, local_store):
    store = await make_store(gateway, local_store)
    keys = ['2024-03-04', '2024-03-05', '2024-03-06', '2024-03-05']
    assert await store.add_task_to_dates(keys, 'Standup') is True
    for key in ('2024-03-04', '2024-03-05', '2024-03-06'):
        tasks = store.tasks_for(key)
        assert len(tasks) == 1
        assert tasks[0].text == 'Standup'
    ids = {store.tasks_for(k)[0].id for k in ('2024-03-04', '2024-03-05', '2024-03-06')}
    assert len(ids) == 3


@pytest.mark.asyncio
async def test_add_to_no_dates_is_a_no_op(gateway, local_store):
    store = await make_store(gateway, local_store)
    assert await store.add_task_to_dates([], 'Standup') is False
    assert await store.add_task_to_dates(['not-a-day'], 'Standup') is False
    assert store.snapshot == {}


@pytest.mark.asyncio
async def test_unknown_task_ids_change_nothing(gateway, local_store):
    store = await make_store(gateway, local_store)
    await store.add_task('2024-03-05', 'keep me')
    before = store.tasks_for('2024-03-05')
    assert await store.toggle_task('2024-03-05', 'missing') is False
    assert await store.delete_task('2024-03-05', 'missing') is False
    assert await store.toggle_task('2024-03-06', before[0].id) is False
    assert store.tasks_for('2024-03-05') == before


@pytest.mark.asyncio
async def test_add_toggle_toggle_delete_returns_to_start(gateway, local_store):
    store = await make_store(gateway, local_store)
    await store.add_task('2024-03-05', 'existing')
    start = store.tasks_for('2024-03-05')
    await store.add_task('2024-03-05', 'temp')
    temp = store.tasks_for('2024-03-05')[-1]
    await store.toggle_task('2024-03-05', temp.id)
    await store.toggle_task('2024-03-05', temp.id)
    assert store.tasks_for('2024-03-05')[-1].done is False
    await store.delete_task('2024-03-05', temp.id)
    assert store.tasks_for('2024-03-05') == start


@pytest.mark.asyncio
async def test_tasks_persist_across_instances(gateway, local_store):
    store = await make_store(gateway, local_store)
    await store.add_task('2024-03-05', 'Buy milk')
    await store.add_task('2024-03-05', 'Walk dog')
    first = store.tasks_for('2024-03-05')
    await store.toggle_task('2024-03-05', first[1].id)
    await store.close()

    again = await make_store(gateway, LocalStore(local_store.db_path))
    tasks = again.tasks_for('2024-03-05')
    assert [t.text for t in tasks] == ['Buy milk', 'Walk dog']
    assert [t.done for t in tasks] == [False, True]
    assert [t.id for t in tasks] == [t.id for t in first]
    raw = local_store.load_tasks()['2024-03-05'][0]
    assert set(raw) == {'id', 'text', 'done', 'createdAt', 'updatedAt'}
    assert isinstance(raw['createdAt'], int)


@pytest.mark.asyncio
async def test_no_cap_on_stored_tasks(gateway, local_store):
    store = await make_store(gateway, local_store)
    for i in range(20):
        await store.add_task('2024-03-05', f'task {i}')
    assert len(store.tasks_for('2024-03-05')) == 20


@pytest.mark.asyncio
async def test_persist_failure_keeps_in_memory_change(gateway, local_store, monkeypatch):
    notices = []
    store = await make_store(gateway, local_store, notices)

    def broken_save(tasks):
        raise sqlite3.OperationalError('database or disk is full')

    monkeypatch.setattr(local_store, 'save_tasks', broken_save)
    assert await store.add_task('2024-03-05', 'Buy milk') is True
    assert [t.text for t in store.tasks_for('2024-03-05')] == ['Buy milk']
    # the failure is only logged
    assert notices == []


@pytest.mark.asyncio
async def test_month_navigation_and_selection(gateway, local_store):
    store = await make_store(gateway, local_store)
    await store.jump_month(1)
    assert store.anchor == date(2024, 4, 1)
    await store.jump_month(-2)
    assert store.anchor == date(2024, 2, 1)
    await store.set_month(date(2025, 7, 19))
    assert store.anchor == date(2025, 7, 1)
    store.select_day('2025-07-04')
    assert store.selected_key == '2025-07-04'
    with pytest.raises(ValueError):
        store.select_day('2025-07-32')


@pytest.mark.asyncio
async def test_ephemeral_local_backend_does_not_persist(local_store):
    backend = LocalBackend(None)
    await backend.add('2024-03-05', 'floating')
    snapshot = await backend.load_month(MARCH)
    assert [t.text for t in snapshot['2024-03-05']] == ['floating']
    assert local_store.load_tasks() == {}
