"""日志配置"""
import logging
import sys
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path

# 当前请求的 X-Request-Id，由 RequestIdMiddleware 设置
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_QUIET_LOGGERS: tuple[str, ...] = (
    "uvicorn",
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "httpx",
    "httpcore",
    "openai",
)


class RequestIdFilter(logging.Filter):
    """给每条日志附加 request_id 字段"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.addFilter(RequestIdFilter())
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_dir: str = "logs",
    app_name: str = "dottie",
    to_files: bool = True,
) -> None:
    """
    配置日志系统

    Args:
        log_level: 日志级别
        log_dir: 日志目录
        app_name: 日志文件名前缀
        to_files: 是否写入按日期命名的日志文件（测试时关闭）
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), logging.DEBUG))

    if to_files:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime("%Y-%m-%d")
        root_logger.addHandler(_handler(
            logging.FileHandler(log_path / f"{app_name}_{today}.log", encoding="utf-8"),
            logging.INFO,
        ))
        root_logger.addHandler(_handler(
            logging.FileHandler(log_path / f"{app_name}_error_{today}.log", encoding="utf-8"),
            logging.ERROR,
        ))

    # 降低第三方库日志级别
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info("Logging configured: level=%s, dir=%s, files=%s", log_level, log_dir, to_files)
