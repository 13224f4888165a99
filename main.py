import logging
import asyncio

from init import Session, init_tables, _engine
from affiliate_system.services.tier_service import TierService
from affiliate_system.web.tracking_server import start_tracking_server
import config

logger = logging.getLogger(__name__)


async def tier_recompute_loop():
    """Daily recomputation of trailing sale counts and tiers"""
    interval = config.TIER_RECOMPUTE_INTERVAL_HOURS * 3600

    while True:
        try:
            with Session() as session:
                results = await TierService(session).recomputeAll()
            logger.info(f"Tier recompute finished: {results}")
        except Exception as e:
            logger.error(f"Error in tier recompute loop: {e}")

        await asyncio.sleep(interval)


async def start_services():
    """Запуск вспомогательных сервисов"""
    services = []

    services.append(asyncio.create_task(
        tier_recompute_loop(),
        name="tier_recompute"
    ))

    return services


async def main():
    """Основная асинхронная функция"""
    services = []
    runner = None
    try:
        init_tables(_engine)
        runner = await start_tracking_server(Session)
        services = await start_services()
        logger.info("Application setup completed")

        await asyncio.Event().wait()

    except Exception as e:
        logger.error(f"Critical error in main: {e}")
        raise
    finally:
        for task in services:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if runner:
            await runner.cleanup()


if __name__ == '__main__':
    try:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Tracking server stopped.")
    except Exception as e:
        logger.critical(f"Unexpected error: {e}")
        raise
