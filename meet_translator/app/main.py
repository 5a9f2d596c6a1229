from fastapi import FastAPI

from contextlib import asynccontextmanager
from meet_translator.app.api.v1.router import api_router
from meet_translator.app.api.v1.endpoints import health
from meet_translator.app.core.config import settings, validate_config
from meet_translator.app.core.logger import logger, setup_logging
from meet_translator.app.services.session_mgr import session_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger.info("Validating configuration...")
    validate_config()
    logger.info(f"Meet Translator starting ({settings.APP_ENV})")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    await session_manager.stop_all()
    logger.info("Meet Translator stopped")


app = FastAPI(title="Meet Translator API", lifespan=lifespan)

app.include_router(api_router, prefix="/api/v1")
# 根路径也提供健康检查，方便负载均衡探测
app.add_api_route("/health", health.health, methods=["GET"])


@app.get("/")
def read_root():
    return {"message": "Welcome to Meet Translator API"}


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Meet Translator API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    uvicorn.run(
        "meet_translator.app.main:app", host=args.host, port=args.port, reload=args.reload
    )
