"""Gateway 入口 -- python -m mail2ai.gateway

环境变量:
    MAIL2AI_HOST: 监听地址（默认 127.0.0.1）
    MAIL2AI_PORT: 监听端口（默认 8000）
"""

import os

import uvicorn

from ..core.config import env_int


def main() -> None:
    uvicorn.run(
        "mail2ai.gateway.main:app",
        host=os.environ.get("MAIL2AI_HOST", "127.0.0.1"),
        port=env_int("MAIL2AI_PORT", 8000, minimum=1),
        log_config=None,
    )


if __name__ == "__main__":
    main()
