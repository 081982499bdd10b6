"""CLI 入口模块 -- python -m mail2ai.core <command>

支持的命令：
  status                       队列统计
  list [status]                列出任务（可按状态筛选）
  show <id-or-prefix>          查看任务详情（支持短 id）
  add <subject> <from> [text]  手动入队一封邮件
  cleanup [days]               删除超过 days 天的终态任务（默认 7）
"""

import asyncio
import json
import sys

from .config import get_queue_path
from .exceptions import Mail2AIError
from .logging_config import setup_logging
from .models import EmailContent, Task, TaskStatus

USAGE = """用法: python -m mail2ai.core <command>
命令:
  status                       队列统计
  list [status]                列出任务（可按状态筛选）
  show <id-or-prefix>          查看任务详情（支持短 id）
  add <subject> <from> [text]  手动入队一封邮件
  cleanup [days]               删除超过 days 天的终态任务（默认 7）"""


def main(argv: list[str] | None = None) -> None:
    """CLI 主入口"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(USAGE)
        sys.exit(1)

    setup_logging(log_level="WARNING")
    command, rest = args[0], args[1:]

    if command == "status":
        code = _run(show_status())
    elif command == "list":
        code = _run(list_tasks(rest[0] if rest else None))
    elif command == "show":
        if not rest:
            print("用法: python -m mail2ai.core show <id-or-prefix>")
            sys.exit(1)
        code = _run(show_task(rest[0]))
    elif command == "add":
        if len(rest) < 2:
            print("用法: python -m mail2ai.core add <subject> <from> [text]")
            sys.exit(1)
        text = rest[2] if len(rest) > 2 else rest[0]
        code = _run(add_task(rest[0], rest[1], text))
    elif command == "cleanup":
        code = _run(cleanup(rest[0] if rest else "7"))
    else:
        print(f"未知命令: {command}")
        print("可用命令: status, list, show, add, cleanup")
        sys.exit(1)

    if code:
        sys.exit(code)


def _run(coro) -> int:
    try:
        return asyncio.run(coro)
    except Mail2AIError as e:
        print(f"错误: {e}")
        return 2


async def _open_queue():
    from .store import create_task_queue

    return await create_task_queue(get_queue_path())


def _format_row(task: Task) -> str:
    return (
        f"{task.id[:12]}  {task.status.value:<10}  "
        f"{task.retries}/{task.max_retries}  "
        f"{task.created_at.isoformat(timespec='seconds')}  {task.subject}"
    )


async def show_status() -> int:
    """打印各状态任务计数"""
    queue = await _open_queue()
    stats = await queue.get_stats()

    print(f"队列文件: {queue.path}")
    print(f"总数: {stats.total}")
    print(f"  pending:    {stats.pending}")
    print(f"  processing: {stats.processing}")
    print(f"  completed:  {stats.completed}")
    print(f"  failed:     {stats.failed}")
    return 0


async def list_tasks(status: str | None) -> int:
    """列出任务"""
    valid = [s.value for s in TaskStatus]
    if status is not None and status not in valid:
        print(f"未知状态: {status}")
        print(f"可用状态: {', '.join(valid)}")
        return 1

    queue = await _open_queue()
    if status is None:
        tasks = await queue.get_all_tasks()
    else:
        tasks = await queue.get_tasks_by_status(TaskStatus(status))

    if not tasks:
        print("没有任务")
        return 0
    for task in tasks:
        print(_format_row(task))
    print(f"共 {len(tasks)} 个任务")
    return 0


async def show_task(id_or_prefix: str) -> int:
    """打印任务详情"""
    queue = await _open_queue()
    task = await queue.find_task(id_or_prefix)
    if task is None:
        print(f"任务不存在: {id_or_prefix}")
        return 1

    print(json.dumps(task.to_store(), ensure_ascii=False, indent=2))
    return 0


async def add_task(subject: str, sender: str, text: str) -> int:
    """手动入队"""
    queue = await _open_queue()
    email = EmailContent.manual(subject=subject, sender=sender, text=text)
    task = await queue.add_task(email, reporter_email=sender)
    print(f"已入队: {task.id}")
    return 0


async def cleanup(days: str) -> int:
    """删除过期终态任务"""
    try:
        max_age_days = float(days)
    except ValueError:
        max_age_days = -1
    if max_age_days < 0:
        print(f"非法天数: {days}")
        return 1

    queue = await _open_queue()
    removed = await queue.cleanup(max_age_s=max_age_days * 24 * 60 * 60)
    print(f"已删除 {removed} 个任务")
    return 0


if __name__ == "__main__":
    main()
