import asyncio
import sys

import sentry_sdk
import uvicorn
from loguru import logger

from infrastructure.scheduler.job_scheduler import PendingTransferScheduler
from infrastructure.services.app_context import build_app_context
from other.config_reader import config
from webapp.app import create_app


@logger.catch
async def main():
    if config.sentry_dsn:
        sentry_sdk.init(
            dsn=config.sentry_dsn,
            traces_sample_rate=1.0,
            profiles_sample_rate=1.0,
        )

    app_context = build_app_context(config)
    await app_context.startup()

    scheduler = None
    if not app_context.is_remote:
        scheduler = PendingTransferScheduler(
            app_context.service,
            expiry_interval_minutes=config.expiry_sweep_minutes,
            reminder_interval_minutes=config.reminder_sweep_minutes,
        )
        scheduler.start()

    app = create_app(app_context, scheduler=scheduler)
    server = uvicorn.Server(uvicorn.Config(app, host=config.webapp_host, port=config.webapp_port,
                                           log_level="info"))
    try:
        await server.serve()
    finally:
        if scheduler is not None:
            scheduler.stop()
        await app_context.close()


if __name__ == "__main__":
    logger.add("logs/pending_transfers.log", rotation="1 MB")
    try:
        if sys.platform != "win32":
            import uvloop
            uvloop.install()
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.error("Exit")
