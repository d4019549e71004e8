from __future__ import annotations

import asyncio

import pytest

from agentpanel.errors import RunNotFoundError
from agentpanel.runs import Run, SQLiteRunStore


def run_async(coro):
    return asyncio.run(coro)


def test_sqlite_store_requires_setup(tmp_path):
    store = SQLiteRunStore(path=str(tmp_path / "runs.sqlite3"))
    with pytest.raises(RuntimeError, match="not initialized"):
        run_async(store.get_run(1))


def test_sqlite_store_round_trips_runs_and_output(tmp_path):
    db_path = str(tmp_path / "runs.sqlite3")

    async def scenario():
        store = SQLiteRunStore(path=db_path)
        await store.setup()
        run = await store.create_run("reviewer", "/repo", "review", "opus")
        running = run.with_status("running")
        await store.update_run(running)
        done = running.with_status("completed").with_metrics(
            cost_usd=0.42, duration_ms=900, tokens_in=12, tokens_out=8
        )
        await store.update_run(done)
        for i in range(4):
            await store.append_output(run.id, f'{{"n":{i}}}')
        await store.close()

        reopened = SQLiteRunStore(path=db_path)
        async with reopened:
            return (
                run,
                done,
                await reopened.get_run(run.id),
                await reopened.get_output(run.id),
                await reopened.get_output(run.id, limit=2),
                await reopened.get_run(999),
            )

    run, done, loaded, full, tail, missing = run_async(scenario())
    assert run.status == "pending"
    assert loaded == done
    assert loaded.metrics.total_tokens == 20
    assert full == ['{"n":0}', '{"n":1}', '{"n":2}', '{"n":3}']
    assert tail == ['{"n":2}', '{"n":3}']
    assert missing is None


def test_sqlite_list_runs_newest_first_with_limit(tmp_path):
    async def scenario():
        async with SQLiteRunStore(path=str(tmp_path / "runs.sqlite3")) as store:
            ids = [(await store.create_run("a", "/p", f"t{i}", "m")).id for i in range(3)]
            return ids, await store.list_runs(), await store.list_runs(limit=2)

    ids, runs, limited = run_async(scenario())
    assert [run.id for run in runs] == sorted(ids, reverse=True)
    assert len(limited) == 2


def test_sqlite_update_unknown_run_raises(tmp_path):
    async def scenario():
        async with SQLiteRunStore(path=str(tmp_path / "runs.sqlite3")) as store:
            await store.update_run(Run(id=5, agent_ref="a", project_path="/p", task="t", model="m"))

    with pytest.raises(RunNotFoundError):
        run_async(scenario())
