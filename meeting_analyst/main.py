import logging
import os
from typing import Optional

from fastapi import FastAPI

from meeting_analyst.context import AppContext
from meeting_analyst.routers.analysis import create_analysis_router
from meeting_analyst.services.analysis_settings import AnalysisSettings, read_config
from meeting_analyst.services.analyst_agent import AnalystRegistry
from meeting_analyst.services.llm import LLMProvider
from meeting_analyst.services.llm_call_logger import LLMCallLogger
from meeting_analyst.services.llm_gateway import LLMGateway
from meeting_analyst.services.logging_setup import configure_logging

VERSION = "0.1.0"


def create_app(cwd: Optional[str] = None, *, provider: Optional[LLMProvider] = None) -> FastAPI:
    cwd = cwd or os.getcwd()
    default_data_dir = os.path.join(cwd, "data")
    os.makedirs(default_data_dir, exist_ok=True)
    # Config always lives in the app-level data dir regardless of custom data_dir
    config_path = os.path.join(default_data_dir, "config.json")
    config = read_config(config_path)
    logging_config = config.get("logging", {})
    if not isinstance(logging_config, dict):
        logging_config = {}

    configure_logging(os.path.join(cwd, "logs"), console_level=logging_config.get("level", "INFO"))
    logger = logging.getLogger("analyst.boot")
    logger.info("Boot: starting create_app cwd=%s", cwd)
    if config:
        logger.info("Boot: config loaded path=%s keys=%s", config_path, sorted(config.keys()))
    else:
        logger.info("Boot: no usable config at %s, using defaults", config_path)

    # Resolve data directory: use custom path from config if valid, else default
    custom_data_dir = config.get("data_dir", "")
    if custom_data_dir and os.path.isdir(custom_data_dir) and os.access(custom_data_dir, os.W_OK):
        data_dir = custom_data_dir
        logger.info("Boot: using custom data_dir=%s", data_dir)
    else:
        data_dir = default_data_dir
        if custom_data_dir:
            logger.warning(
                "Boot: custom data_dir=%s is invalid or not writable, falling back to %s",
                custom_data_dir, data_dir,
            )

    ctx = AppContext(cwd=cwd, data_dir=data_dir, config_path=config_path)
    ctx.ensure_dirs()
    logger.info("Boot: AppContext ready data_dir=%s analysis_dir=%s", ctx.data_dir, ctx.analysis_dir)

    settings = AnalysisSettings.from_config(config)
    call_logger = LLMCallLogger(
        ctx.llm_logs_dir,
        enabled=bool(logging_config.get("llm_calls", False)),
    )
    gateway = LLMGateway(
        config_path,
        provider=provider,
        settings=settings,
        call_logger=call_logger,
    )
    logger.info(
        "Boot: gateway ready available=%s grounding=%s",
        gateway.is_available(), gateway.supports_grounding(),
    )
    registry = AnalystRegistry(ctx, gateway)

    app = FastAPI(title="Meeting Analyst", version=VERSION)
    app.state.ctx = ctx
    app.state.registry = registry
    app.state.gateway = gateway

    app.include_router(create_analysis_router(registry))
    logger.info("Boot: analysis router mounted")

    @app.get("/api/health")
    def health() -> dict:
        return {
            "status": "ok",
            "version": VERSION,
            "llm_available": gateway.is_available(),
            "analysts": len(registry.list()),
        }

    logger.info("Boot: create_app complete")
    return app
