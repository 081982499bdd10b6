"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含队列文件可读、处理能力就绪、调度器状态。
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. task_queue: 队列文件可读且内容合法
    2. processor: 处理能力 is_ready()（未实现时视为就绪）
    3. scheduler: running / stopped / disabled（仅展示，不影响结果）
    """
    checks: dict[str, str] = {}
    all_ok = True

    # 1. 队列文件
    try:
        await request.app.state.task_queue.get_stats()
        checks["task_queue"] = "ok"
    except Exception as e:
        checks["task_queue"] = f"error: {e}"
        all_ok = False

    # 2. 处理能力
    processor = request.app.state.processor
    is_ready = getattr(processor, "is_ready", None)
    try:
        if is_ready is None or await is_ready():
            checks["processor"] = "ok"
        else:
            checks["processor"] = "not_ready"
            all_ok = False
    except Exception as e:
        log.warning("processor_ready_check_error", error=str(e))
        checks["processor"] = f"error: {e}"
        all_ok = False

    # 3. 调度器
    scheduler = request.app.state.scheduler
    if not scheduler.config.enabled:
        checks["scheduler"] = "disabled"
    elif scheduler.draining:
        checks["scheduler"] = "draining"
    elif scheduler.running:
        checks["scheduler"] = "running"
    else:
        checks["scheduler"] = "stopped"

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
