"""
University Assessment Engine - Abandonment Sweep
One-shot sweep of expired attempts, for cron:

    python -m assessment.scripts.sweep_abandoned
"""
import asyncio
import logging

from assessment.main import configure_logging, run_abandon_sweep

logger = logging.getLogger(__name__)


async def main() -> int:
    configure_logging()
    abandoned = await run_abandon_sweep()
    logger.info(f"Sweep finished: {abandoned} attempt(s) abandoned")
    return abandoned


if __name__ == "__main__":
    asyncio.run(main())
