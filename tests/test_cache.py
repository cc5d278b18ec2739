"""Optimistic mutations: predicted state, confirmation and exact rollback."""

import copy

import pytest

from conftest import column_named
from taskboard.cache import (
    BOARDS,
    BoardMutations,
    OptimisticMutation,
    QueryCache,
    board_key,
    relocate_task,
    subtasks_key,
    task_key,
)
from taskboard.errors import ConflictError, NotFoundError


class TestQueryCache:
    def test_fetch_loads_once_until_invalidated(self):
        cache = QueryCache()
        calls = []

        def loader():
            calls.append(1)
            return [len(calls)]

        assert cache.fetch(BOARDS, loader) == [1]
        assert cache.fetch(BOARDS, loader) == [1]
        cache.invalidate(("boards",))
        assert cache.fetch(BOARDS, loader) == [2]

    def test_invalidate_matches_prefix(self):
        cache = QueryCache()
        cache.set(("tasks", "column", "c1"), [])
        cache.set(("tasks", "column", "c2"), [])
        cache.set(("tasks", "t1"), {})
        assert cache.invalidate(("tasks", "column")) == 2
        assert not cache.is_stale(("tasks", "t1"))

    def test_update_does_not_alias_callers(self):
        cache = QueryCache()
        original = [{"id": "a"}]
        cache.set(BOARDS, original)
        cache.update(BOARDS, lambda boards: boards + [{"id": "b"}])
        assert original == [{"id": "a"}]
        assert len(cache.get(BOARDS)) == 2

    def test_snapshot_restores_values_and_absence(self):
        cache = QueryCache()
        cache.set(BOARDS, [{"id": "a", "name": "Home"}])
        snapshot = cache.snapshot([BOARDS, board_key("a")])
        cache.update(BOARDS, lambda boards: [{**boards[0], "name": "Changed"}])
        cache.set(board_key("a"), {"id": "a"})
        cache.restore(snapshot)
        assert cache.get(BOARDS) == [{"id": "a", "name": "Home"}]
        assert board_key("a") not in cache


class TestOptimisticMutation:
    def test_failure_rolls_back_exactly(self):
        cache = QueryCache()
        cache.set(BOARDS, [{"id": "a", "position": 1}, {"id": "b", "position": 2}])
        before = cache.get(BOARDS)

        def send():
            raise ConflictError("taken")

        result = OptimisticMutation(
            cache,
            keys=[BOARDS],
            apply=lambda c: c.update(BOARDS, lambda boards: list(reversed(boards))),
            send=send,
            settle=[BOARDS],
        ).run()

        assert result.ok is False
        assert isinstance(result.error, ConflictError)
        assert cache.get(BOARDS) == before
        assert cache.is_stale(BOARDS)

    def test_success_reconciles_with_server_data(self):
        cache = QueryCache()
        cache.set(task_key("t1"), {"id": "t1", "title": "Old", "status": "todo"})
        result = OptimisticMutation(
            cache,
            keys=[task_key("t1")],
            apply=lambda c: c.update(task_key("t1"), lambda t: {**t, "title": "New"}),
            send=lambda: {"id": "t1", "title": "New", "status": "done"},
            reconcile=lambda c, data: c.set(task_key("t1"), data),
        ).run()
        assert result.ok
        assert cache.get(task_key("t1"))["status"] == "done"

    def test_conflict_marks_restored_keys_for_refetch(self):
        cache = QueryCache()
        cache.set(task_key("t1"), {"id": "t1", "title": "Old"})
        cache.set(board_key("b1"), {"id": "b1"})

        def send():
            raise ConflictError("taken")

        result = OptimisticMutation(
            cache,
            keys=[task_key("t1")],
            apply=lambda c: c.update(task_key("t1"), lambda t: {**t, "title": "New"}),
            send=send,
            invalidate=[board_key("b1")],
        ).run()

        assert result.ok is False
        assert cache.get(task_key("t1")) == {"id": "t1", "title": "Old"}
        assert cache.is_stale(task_key("t1"))
        assert cache.is_stale(board_key("b1"))

    def test_other_failures_keep_restored_keys_fresh(self):
        cache = QueryCache()
        cache.set(task_key("t1"), {"id": "t1", "title": "Old"})

        def send():
            raise NotFoundError("Task not found")

        OptimisticMutation(
            cache,
            keys=[task_key("t1")],
            apply=lambda c: c.update(task_key("t1"), lambda t: {**t, "title": "New"}),
            send=send,
        ).run()

        assert cache.get(task_key("t1"))["title"] == "Old"
        assert not cache.is_stale(task_key("t1"))

    def test_unexpected_send_error_restores_then_propagates(self):
        cache = QueryCache()
        cache.set(BOARDS, [{"id": "a"}, {"id": "b"}])

        def send():
            raise KeyError("columns")

        mutation = OptimisticMutation(
            cache,
            keys=[BOARDS],
            apply=lambda c: c.update(BOARDS, lambda boards: list(reversed(boards))),
            send=send,
            settle=[BOARDS],
        )
        with pytest.raises(KeyError):
            mutation.run()
        assert cache.get(BOARDS) == [{"id": "a"}, {"id": "b"}]
        assert cache.is_stale(BOARDS)

    def test_reconcile_error_restores_then_propagates(self):
        cache = QueryCache()
        cache.set(task_key("t1"), {"id": "t1", "title": "Old"})

        def reconcile(c, data):
            raise TypeError("bad payload")

        mutation = OptimisticMutation(
            cache,
            keys=[task_key("t1")],
            apply=lambda c: c.update(task_key("t1"), lambda t: {**t, "title": "New"}),
            send=lambda: None,
            reconcile=reconcile,
        )
        with pytest.raises(TypeError):
            mutation.run()
        assert cache.get(task_key("t1")) == {"id": "t1", "title": "Old"}


def test_relocate_task_renumbers_both_columns():
    board = {
        "id": "b",
        "columns": [
            {"id": "c1", "tasks": [{"id": "a", "position": 1}, {"id": "b", "position": 2}]},
            {"id": "c2", "tasks": [{"id": "x", "position": 1}]},
        ],
    }
    moved = relocate_task(board, "a", "c2", 0)
    assert [(t["id"], t["position"]) for t in moved["columns"][0]["tasks"]] == [("b", 1)]
    assert [(t["id"], t["position"]) for t in moved["columns"][1]["tasks"]] == [("a", 1), ("x", 2)]
    assert moved["columns"][1]["tasks"][0]["columnId"] == "c2"
    assert board["columns"][0]["tasks"][0]["id"] == "a"


class TestBoardMutations:
    @pytest.fixture
    def mutations(self, api):
        return BoardMutations(api)

    def test_delete_board_drops_detail_and_refreshes_list(self, api, mutations):
        home = api.create_board("Home")
        work = api.create_board("Work")
        mutations.boards()
        mutations.board(work["id"])

        result = mutations.delete_board(work["id"])

        assert result.ok
        assert board_key(work["id"]) not in mutations.cache
        assert mutations.cache.is_stale(BOARDS)
        assert [b["id"] for b in mutations.boards()] == [home["id"]]

    def test_failed_reorder_restores_board_view(self, api, mutations, board):
        board_id = board["id"]
        before = mutations.board(board_id)
        todo = column_named(before, "Todo")
        result = mutations.reorder_tasks(board_id, todo["id"], ["not-a-task"])
        assert result.ok is False
        assert isinstance(result.error, NotFoundError)
        assert mutations.cache.get(board_key(board_id)) == before

    def test_set_default_is_reflected_after_refetch(self, api, mutations):
        api.create_board("Home")
        work = api.create_board("Work")
        mutations.boards()
        assert mutations.set_default_board(work["id"]).ok
        assert [b["name"] for b in mutations.boards() if b["isDefault"]] == ["Work"]

    def test_update_subtask_invalidates_related_scopes(self, api, mutations, board):
        todo = column_named(board, "Todo")
        task = api.create_task(board["id"], todo["id"], "Release", subtasks=[{"title": "Tag"}])
        subtask_id = task["subtasks"][0]["id"]
        mutations.board(board["id"])
        mutations.task(task["id"])
        mutations.subtasks(task["id"])

        result = mutations.update_subtask(board["id"], task["id"], subtask_id, completed=True)

        assert result.ok
        for key in (task_key(task["id"]), board_key(board["id"]), subtasks_key(task["id"])):
            assert mutations.cache.is_stale(key)
        assert mutations.task(task["id"])["subtasks"][0]["completed"] is True

    def test_create_task_adds_to_cached_column(self, api, mutations, board):
        todo = column_named(board, "Todo")
        mutations.column_tasks(todo["id"])
        result = mutations.create_task(board["id"], todo["id"], "Fresh")
        assert result.ok
        assert [t["title"] for t in mutations.column_tasks(todo["id"])] == ["Fresh"]

    def test_move_task_is_applied_before_the_request(self, api, mutations, board):
        todo = column_named(board, "Todo")
        done = column_named(board, "Done")
        task = api.create_task(board["id"], todo["id"], "Ship")
        mutations.board(board["id"])
        seen = {}
        original = mutations.client.move_task

        def spy(*args):
            seen["board"] = mutations.cache.get(board_key(board["id"]))
            return original(*args)

        mutations.client.move_task = spy
        assert mutations.move_task(board["id"], task["id"], done["id"], 1).ok
        predicted = column_named(seen["board"], "Done")
        assert [t["id"] for t in predicted["tasks"]] == [task["id"]]
        refreshed = mutations.board(board["id"])
        assert [t["id"] for t in column_named(refreshed, "Done")["tasks"]] == [task["id"]]

    def test_update_task_conflict_is_refetched(self, api, mutations, board):
        todo = column_named(board, "Todo")
        task = api.create_task(board["id"], todo["id"], "Original")
        mutations.task(task["id"])

        def conflicting(*args, **kwargs):
            raise ConflictError("Conflicting position or default board")

        mutations.client.update_task = conflicting
        result = mutations.update_task(board["id"], task["id"], title="Changed")

        assert result.ok is False
        assert isinstance(result.error, ConflictError)
        assert mutations.cache.get(task_key(task["id"]))["title"] == "Original"
        assert mutations.cache.is_stale(task_key(task["id"]))


def spy_on(mutations: BoardMutations, method: str, *keys):
    """Record the cached values of ``keys`` at the moment ``method`` is sent."""
    seen = {}
    original = getattr(mutations.client, method)

    def spy(*args, **kwargs):
        for key in keys:
            seen[key] = copy.deepcopy(mutations.cache.get(key))
        return original(*args, **kwargs)

    setattr(mutations.client, method, spy)
    return seen


class TestBoardMutationFanOut:
    @pytest.fixture
    def mutations(self, api):
        return BoardMutations(api)

    @pytest.fixture
    def task(self, api, board):
        todo = column_named(board, "Todo")
        return api.create_task(
            board["id"], todo["id"], "Release", subtasks=[{"title": "Tag"}, {"title": "Build"}, {"title": "Publish"}]
        )

    def test_create_board_reconciles_list(self, api, mutations):
        api.create_board("Home")
        mutations.boards()

        result = mutations.create_board("Work", is_default=True)

        assert result.ok
        cached = mutations.cache.get(BOARDS)
        assert [(b["name"], b["isDefault"]) for b in cached] == [("Home", False), ("Work", True)]
        assert mutations.cache.is_stale(BOARDS)
        assert [b["name"] for b in mutations.boards() if b["isDefault"]] == ["Work"]

    def test_update_board_is_applied_before_the_request(self, mutations, board):
        mutations.boards()
        mutations.board(board["id"])
        seen = spy_on(mutations, "update_board", BOARDS, board_key(board["id"]))

        assert mutations.update_board(board["id"], name="Renamed").ok

        assert seen[BOARDS][0]["name"] == "Renamed"
        assert seen[board_key(board["id"])]["name"] == "Renamed"
        assert mutations.board(board["id"])["name"] == "Renamed"
        assert [b["name"] for b in mutations.boards()] == ["Renamed"]

    def test_reorder_boards_is_applied_before_the_request(self, api, mutations):
        a = api.create_board("A")
        b = api.create_board("B")
        mutations.boards()
        seen = spy_on(mutations, "reorder_boards", BOARDS)

        assert mutations.reorder_boards([b["id"], a["id"]]).ok

        assert [(x["name"], x["position"]) for x in seen[BOARDS]] == [("B", 1), ("A", 2)]
        assert mutations.cache.is_stale(BOARDS)
        assert [x["name"] for x in mutations.boards()] == ["B", "A"]

    def test_create_column_invalidates_board(self, mutations, board):
        mutations.boards()
        mutations.board(board["id"])

        assert mutations.create_column(board["id"], "Archive").ok

        assert mutations.cache.is_stale(board_key(board["id"]))
        assert mutations.cache.is_stale(BOARDS)
        assert [c["name"] for c in mutations.board(board["id"])["columns"]][-1] == "Archive"

    def test_reorder_columns_is_applied_before_the_request(self, mutations, board):
        ids = [c["id"] for c in board["columns"]]
        mutations.board(board["id"])
        seen = spy_on(mutations, "reorder_columns", board_key(board["id"]))

        assert mutations.reorder_columns(board["id"], [ids[2], ids[0], ids[1]]).ok

        predicted = seen[board_key(board["id"])]["columns"]
        assert [(c["name"], c["position"]) for c in predicted] == [("Done", 1), ("Todo", 2), ("Doing", 3)]
        assert [c["name"] for c in mutations.board(board["id"])["columns"]] == ["Done", "Todo", "Doing"]

    def test_failed_reorder_columns_restores_board_view(self, mutations, board):
        ids = [c["id"] for c in board["columns"]]
        before = copy.deepcopy(mutations.board(board["id"]))

        result = mutations.reorder_columns(board["id"], [ids[1], ids[0], "missing"])

        assert result.ok is False
        assert isinstance(result.error, NotFoundError)
        assert mutations.cache.get(board_key(board["id"])) == before

    def test_delete_task_is_applied_before_the_request(self, mutations, board, task):
        mutations.board(board["id"])
        mutations.task(task["id"])
        seen = spy_on(mutations, "delete_task", board_key(board["id"]), task_key(task["id"]))

        assert mutations.delete_task(board["id"], task["id"]).ok

        assert column_named(seen[board_key(board["id"])], "Todo")["tasks"] == []
        assert seen[task_key(task["id"])] is None
        assert mutations.cache.is_stale(board_key(board["id"]))
        assert column_named(mutations.board(board["id"]), "Todo")["tasks"] == []

    def test_create_subtask_reconciles_list(self, mutations, board, task):
        mutations.subtasks(task["id"])
        mutations.task(task["id"])

        assert mutations.create_subtask(board["id"], task["id"], "Announce").ok

        cached = mutations.cache.get(subtasks_key(task["id"]))
        assert [(s["title"], s["position"]) for s in cached][-1] == ("Announce", 4)
        assert mutations.cache.is_stale(task_key(task["id"]))
        assert [s["title"] for s in mutations.task(task["id"])["subtasks"]][-1] == "Announce"

    def test_delete_subtask_is_applied_before_the_request(self, mutations, board, task):
        tag = task["subtasks"][0]
        mutations.subtasks(task["id"])
        seen = spy_on(mutations, "delete_subtask", subtasks_key(task["id"]))

        assert mutations.delete_subtask(board["id"], task["id"], tag["id"]).ok

        predicted = seen[subtasks_key(task["id"])]
        assert [(s["title"], s["position"]) for s in predicted] == [("Build", 1), ("Publish", 2)]
        assert [s["title"] for s in mutations.subtasks(task["id"])] == ["Build", "Publish"]

    def test_reorder_subtasks_is_applied_before_the_request(self, mutations, board, task):
        tag, build, publish = (s["id"] for s in task["subtasks"])
        mutations.subtasks(task["id"])
        seen = spy_on(mutations, "reorder_subtasks", subtasks_key(task["id"]))

        assert mutations.reorder_subtasks(board["id"], task["id"], [publish, tag, build]).ok

        predicted = seen[subtasks_key(task["id"])]
        assert [s["title"] for s in predicted] == ["Publish", "Tag", "Build"]
        assert [s["title"] for s in mutations.subtasks(task["id"])] == ["Publish", "Tag", "Build"]

    def test_failed_reorder_subtasks_restores_list(self, mutations, board, task):
        tag, build, _ = (s["id"] for s in task["subtasks"])
        before = copy.deepcopy(mutations.subtasks(task["id"]))

        result = mutations.reorder_subtasks(board["id"], task["id"], [build, tag, "missing"])

        assert result.ok is False
        assert isinstance(result.error, NotFoundError)
        assert mutations.cache.get(subtasks_key(task["id"])) == before
