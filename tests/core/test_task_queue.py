"""JsonTaskQueue 单元测试

测试内容：
1. 初始化与落盘格式
2. add / pick / complete / fail 生命周期
3. 重试与重试耗尽
4. 未知 id 与非法流转为 no-op
5. 查询、日志、统计、清理、短 id 查询、遗留回收
"""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from mail2ai.core.exceptions import StorageError
from mail2ai.core.models import EmailContent, LogLevel, TaskResult, TaskStatus
from mail2ai.core.store import JsonTaskQueue, create_task_queue, read_state, write_state


def _prompt(subject: str) -> dict:
    return {"subject": subject, "from": {"address": "alice@example.com"}}


class TestInitialize:
    """初始化"""

    async def test_creates_file_and_parent_dir(self, tmp_queue_path: Path):
        """文件不存在时创建空队列"""
        assert not tmp_queue_path.parent.exists()
        await create_task_queue(tmp_queue_path)

        data = json.loads(tmp_queue_path.read_text(encoding="utf-8"))
        assert data["tasks"] == []
        assert "lastUpdated" in data

    async def test_existing_file_untouched(self, tmp_queue_path: Path):
        """已有文件不会被覆盖"""
        first = await create_task_queue(tmp_queue_path)
        task = await first.add_task(_prompt("keep"), "alice@example.com")

        second = await create_task_queue(tmp_queue_path)
        assert (await second.get_task(task.id)) is not None

    async def test_initialize_is_idempotent(self, queue: JsonTaskQueue):
        """重复初始化无副作用"""
        await queue.initialize()
        await queue.initialize()
        assert await queue.get_all_tasks() == []

    async def test_corrupted_file_raises_storage_error(self, tmp_queue_path: Path):
        """文件内容损坏时抛出 StorageError"""
        tmp_queue_path.parent.mkdir(parents=True)
        tmp_queue_path.write_text("{not json", encoding="utf-8")
        queue = await create_task_queue(tmp_queue_path)

        with pytest.raises(StorageError):
            await queue.get_all_tasks()

    def test_invalid_max_retries(self, tmp_queue_path: Path):
        """max_retries 至少为 1"""
        with pytest.raises(ValueError):
            JsonTaskQueue(tmp_queue_path, max_retries=0)


class TestAddTask:
    """入队"""

    async def test_add_task_defaults(self, queue: JsonTaskQueue):
        """新任务为 pending，带创建日志"""
        task = await queue.add_task(_prompt("hello"), "alice@example.com")

        assert task.status == TaskStatus.PENDING
        assert task.retries == 0
        assert task.max_retries == 3
        assert task.reporter_email == "alice@example.com"
        assert task.started_at is None
        assert [entry.message for entry in task.logs] == ["Task created"]

    async def test_add_task_persisted_camel_case(self, queue: JsonTaskQueue):
        """落盘为 camelCase，缩进 2"""
        task = await queue.add_task(_prompt("hello"), "alice@example.com")

        content = queue.path.read_text(encoding="utf-8")
        assert '\n  "tasks"' in content
        data = json.loads(content)
        stored = data["tasks"][0]
        assert stored["id"] == task.id
        assert stored["reporterEmail"] == "alice@example.com"
        assert stored["maxRetries"] == 3
        assert stored["prompt"]["subject"] == "hello"

    async def test_add_email_content(self, queue: JsonTaskQueue, sample_email: EmailContent):
        """EmailContent 载荷转换为 prompt"""
        task = await queue.add_task(sample_email, "alice@example.com")
        assert task.prompt["from"]["address"] == "alice@example.com"
        assert task.subject == "Fix login bug"

    async def test_ids_unique(self, queue: JsonTaskQueue):
        """id 唯一"""
        tasks = [await queue.add_task(_prompt(str(i)), "a@example.com") for i in range(20)]
        assert len({t.id for t in tasks}) == 20

    async def test_queue_max_retries_applied(self, tmp_queue_path: Path):
        """队列配置的 max_retries 写入新任务"""
        queue = await create_task_queue(tmp_queue_path, max_retries=5)
        task = await queue.add_task(_prompt("x"), "a@example.com")
        assert task.max_retries == 5


class TestPickTask:
    """认领"""

    async def test_pick_fifo(self, queue: JsonTaskQueue):
        """按存储顺序认领"""
        first = await queue.add_task(_prompt("first"), "a@example.com")
        second = await queue.add_task(_prompt("second"), "a@example.com")

        picked = await queue.pick_task()
        assert picked is not None
        assert picked.id == first.id
        assert picked.status == TaskStatus.PROCESSING
        assert picked.started_at is not None
        assert picked.logs[-1].message == "Task processing started"

        picked_again = await queue.pick_task()
        assert picked_again is not None
        assert picked_again.id == second.id

    async def test_pick_empty_returns_none(self, queue: JsonTaskQueue):
        """没有 pending 任务时返回 None"""
        assert await queue.pick_task() is None

    async def test_pick_skips_processing(self, queue: JsonTaskQueue):
        """已 processing 的任务不会被再次认领"""
        await queue.add_task(_prompt("only"), "a@example.com")
        assert await queue.pick_task() is not None
        assert await queue.pick_task() is None


class TestCompleteTask:
    """完成"""

    async def test_complete_task(self, queue: JsonTaskQueue):
        """processing -> completed"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()

        completed = await queue.complete_task(task.id, {"summary": "done"})
        assert completed is not None
        assert completed.status == TaskStatus.COMPLETED
        assert completed.result == TaskResult(summary="done")
        assert completed.completed_at is not None
        assert completed.logs[-1].message == "Task processing completed"

        stored = await queue.get_task(task.id)
        assert stored is not None
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result is not None
        assert stored.result.summary == "done"

    async def test_complete_unknown_id_is_noop(self, queue: JsonTaskQueue):
        """未知 id 不修改存储文件（包括 lastUpdated）"""
        await queue.add_task(_prompt("x"), "a@example.com")
        before = queue.path.read_text(encoding="utf-8")

        assert await queue.complete_task("does-not-exist", {"summary": "x"}) is None
        assert await queue.fail_task("does-not-exist", "boom") is None
        assert await queue.add_task_log("does-not-exist", LogLevel.INFO, "x") is False
        assert queue.path.read_text(encoding="utf-8") == before

    async def test_complete_pending_is_rejected(self, queue: JsonTaskQueue):
        """pending 任务不能直接完成"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        assert await queue.complete_task(task.id, {"summary": "x"}) is None
        stored = await queue.get_task(task.id)
        assert stored is not None
        assert stored.status == TaskStatus.PENDING

    async def test_completed_is_terminal(self, queue: JsonTaskQueue):
        """终态任务不可再完成或失败"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()
        await queue.complete_task(task.id, {"summary": "first"})

        assert await queue.complete_task(task.id, {"summary": "second"}) is None
        assert await queue.fail_task(task.id, "boom") is None
        stored = await queue.get_task(task.id)
        assert stored is not None
        assert stored.result is not None
        assert stored.result.summary == "first"


class TestFailTask:
    """失败与重试"""

    async def test_fail_requeues(self, queue: JsonTaskQueue):
        """未达上限时回到 pending"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()

        failed = await queue.fail_task(task.id, "boom")
        assert failed is not None
        assert failed.status == TaskStatus.PENDING
        assert failed.retries == 1
        assert failed.started_at is None
        assert failed.error is None
        messages = [entry.message for entry in failed.logs]
        assert "Task processing failed: boom" in messages
        assert messages[-1] == "Task will retry (1/3)"
        assert failed.logs[-2].level == LogLevel.ERROR

    async def test_retry_exhaustion(self, queue: JsonTaskQueue):
        """第 max_retries 次失败进入 failed"""
        task = await queue.add_task(_prompt("x"), "a@example.com")

        for attempt in range(1, 4):
            picked = await queue.pick_task()
            assert picked is not None
            result = await queue.fail_task(task.id, f"error {attempt}")
            assert result is not None
            assert result.retries == attempt

        stored = await queue.get_task(task.id)
        assert stored is not None
        assert stored.status == TaskStatus.FAILED
        assert stored.retries == 3
        assert stored.error == "error 3"
        assert stored.completed_at is not None
        assert await queue.pick_task() is None

    async def test_fail_unknown_id_is_noop(self, queue: JsonTaskQueue):
        """未知 id 返回 None"""
        assert await queue.fail_task("does-not-exist", "boom") is None

    async def test_fail_pending_is_rejected(self, queue: JsonTaskQueue):
        """pending 任务不能失败"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        assert await queue.fail_task(task.id, "boom") is None
        stored = await queue.get_task(task.id)
        assert stored is not None
        assert stored.retries == 0


class TestQueries:
    """查询"""

    async def test_get_task_unknown(self, queue: JsonTaskQueue):
        """未知 id 返回 None"""
        assert await queue.get_task("nope") is None

    async def test_get_all_in_stored_order(self, queue: JsonTaskQueue):
        """全部任务按存储顺序"""
        ids = [(await queue.add_task(_prompt(str(i)), "a@example.com")).id for i in range(3)]
        assert [t.id for t in await queue.get_all_tasks()] == ids

    async def test_get_tasks_by_status(self, queue: JsonTaskQueue):
        """按状态筛选"""
        first = await queue.add_task(_prompt("a"), "a@example.com")
        await queue.add_task(_prompt("b"), "a@example.com")
        await queue.pick_task()

        processing = await queue.get_tasks_by_status(TaskStatus.PROCESSING)
        pending = await queue.get_tasks_by_status(TaskStatus.PENDING)
        assert [t.id for t in processing] == [first.id]
        assert len(pending) == 1
        assert await queue.get_tasks_by_status(TaskStatus.FAILED) == []

    async def test_find_task_by_prefix(self, queue: JsonTaskQueue):
        """短 id 前缀查询"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        found = await queue.find_task(task.id[:20])
        assert found is not None
        assert found.id == task.id
        assert (await queue.find_task(task.id)) is not None
        assert await queue.find_task("zzzz") is None
        assert await queue.find_task("") is None

    async def test_get_stats(self, queue: JsonTaskQueue):
        """各状态计数"""
        a = await queue.add_task(_prompt("a"), "a@example.com")
        await queue.add_task(_prompt("b"), "a@example.com")
        await queue.add_task(_prompt("c"), "a@example.com")
        await queue.pick_task()
        await queue.complete_task(a.id, {"summary": "ok"})
        await queue.pick_task()

        stats = await queue.get_stats()
        assert stats.total == 3
        assert stats.pending == 1
        assert stats.processing == 1
        assert stats.completed == 1
        assert stats.failed == 0


class TestTaskLog:
    """任务日志"""

    async def test_add_task_log(self, queue: JsonTaskQueue):
        """追加日志并更新 updated_at"""
        task = await queue.add_task(_prompt("x"), "a@example.com")

        appended = await queue.add_task_log(
            task.id, LogLevel.WARN, "Something odd", data={"k": 1}
        )
        assert appended is True

        stored = await queue.get_task(task.id)
        assert stored is not None
        assert len(stored.logs) == 2
        assert stored.logs[-1].level == LogLevel.WARN
        assert stored.logs[-1].message == "Something odd"
        assert stored.logs[-1].data == {"k": 1}
        assert stored.updated_at >= task.updated_at

    async def test_add_task_log_unknown_id(self, queue: JsonTaskQueue):
        """未知 id 返回 False"""
        assert await queue.add_task_log("nope", LogLevel.INFO, "x") is False

    async def test_logs_are_append_only(self, queue: JsonTaskQueue):
        """生命周期中日志只增不减"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()
        await queue.add_task_log(task.id, LogLevel.INFO, "working")
        await queue.fail_task(task.id, "boom")
        await queue.pick_task()
        await queue.complete_task(task.id, {"summary": "ok"})

        stored = await queue.get_task(task.id)
        assert stored is not None
        assert [entry.message for entry in stored.logs] == [
            "Task created",
            "Task processing started",
            "working",
            "Task processing failed: boom",
            "Task will retry (1/3)",
            "Task processing started",
            "Task processing completed",
        ]


def _age_tasks(path: Path, completed_at: dict[str, datetime | None]) -> None:
    """直接改写存储文件中的 completed_at"""
    state = read_state(path)
    for task in state.tasks:
        if task.id in completed_at:
            task.completed_at = completed_at[task.id]
    write_state(path, state.tasks)


class TestCleanup:
    """清理"""

    async def test_cleanup_removes_old_terminal_only(self, queue: JsonTaskQueue):
        """只删除过期终态任务"""
        old_done = await queue.add_task(_prompt("old done"), "a@example.com")
        await queue.pick_task()
        await queue.complete_task(old_done.id, {"summary": "ok"})

        new_done = await queue.add_task(_prompt("new done"), "a@example.com")
        await queue.pick_task()
        await queue.complete_task(new_done.id, {"summary": "ok"})

        old_pending = await queue.add_task(_prompt("old pending"), "a@example.com")

        ten_days_ago = datetime.now(UTC) - timedelta(days=10)
        _age_tasks(queue.path, {old_done.id: ten_days_ago})

        removed = await queue.cleanup(max_age_s=7 * 24 * 3600)
        assert removed == 1

        remaining = {t.id for t in await queue.get_all_tasks()}
        assert remaining == {new_done.id, old_pending.id}

    async def test_cleanup_missing_completed_at_kept(self, queue: JsonTaskQueue):
        """缺少 completed_at 的终态任务按刚完成计"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()
        await queue.complete_task(task.id, {"summary": "ok"})
        _age_tasks(queue.path, {task.id: None})

        assert await queue.cleanup(max_age_s=1) == 0

    async def test_cleanup_zero_age_removes_all_terminal(self, queue: JsonTaskQueue):
        """max_age 为 0 时删除全部终态任务"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()
        await queue.complete_task(task.id, {"summary": "ok"})
        await queue.add_task(_prompt("y"), "a@example.com")

        assert await queue.cleanup(max_age_s=0) == 1
        assert (await queue.get_stats()).total == 1

    async def test_cleanup_empty_queue(self, queue: JsonTaskQueue):
        """空队列返回 0"""
        assert await queue.cleanup() == 0


class TestStaleRecovery:
    """遗留 processing 回收"""

    async def test_recover_stale_processing(self, queue: JsonTaskQueue):
        """超过阈值的 processing 任务按一次失败处理"""
        task = await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()

        state = read_state(queue.path)
        state.tasks[0].started_at = datetime.now(UTC) - timedelta(hours=1)
        write_state(queue.path, state.tasks)

        recovered = await queue.recover_stale_tasks(stale_after_s=60)
        assert [t.id for t in recovered] == [task.id]
        stored = await queue.get_task(task.id)
        assert stored is not None
        assert stored.status == TaskStatus.PENDING
        assert stored.retries == 1

    async def test_recent_processing_untouched(self, queue: JsonTaskQueue):
        """未超过阈值的 processing 任务不受影响"""
        await queue.add_task(_prompt("x"), "a@example.com")
        await queue.pick_task()

        assert await queue.recover_stale_tasks(stale_after_s=3600) == []
        assert (await queue.get_stats()).processing == 1
