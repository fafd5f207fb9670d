"""
MoxMuse resilience core entry point
Builds the runtime, starts health polling and reports service health
"""

import asyncio
import sys

from loguru import logger

from moxmuse.runtime import create_runtime
from moxmuse.settings import global_settings


async def main() -> None:
    """Main function"""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)
    logger.info("Starting resilience runtime...")

    runtime = create_runtime(global_settings)

    try:
        runtime.start()

        # Seed statuses instead of waiting for the first interval
        await runtime.health_monitor.perform_health_checks()
        report = runtime.degradation.get_service_health()
        logger.info(f"Initial service health: {report.overall}")
        for status in report.services:
            logger.info(
                f"  - {status.name}: {'up' if status.available else 'down'}"
                + (f" ({status.last_error})" if status.last_error else "")
            )

        logger.info("Runtime is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        await runtime.shutdown()
        logger.info("Runtime stopped")


if __name__ == "__main__":
    asyncio.run(main())
