import sys
import logging
from loguru import logger

from meet_translator.app.core.config import settings


class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str = None):
    # 移除默认的 handler
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level or settings.LOG_LEVEL,
    )

    # 拦截标准 logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # 第三方库只保留 WARNING 以上
    for lib in ["uvicorn", "uvicorn.access", "fastapi", "httpx", "httpcore", "websockets"]:
        logging.getLogger(lib).handlers = []
        logging.getLogger(lib).propagate = True
        logging.getLogger(lib).setLevel(logging.WARNING)


__all__ = ["logger", "setup_logging"]
