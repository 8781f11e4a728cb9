import asyncio
import logging

from onboarding.modules.reconciliation.sweep import ReconciliationSweep

logger = logging.getLogger(__name__)


async def reconciliation_scheduler_loop(sweep: ReconciliationSweep, interval_seconds: float, sleep=asyncio.sleep):
    """Background task that runs the reconciliation sweep on a fixed interval"""
    while True:
        try:
            # The sweep is blocking boto3 I/O
            await asyncio.to_thread(sweep.run)
        except Exception as e:
            logger.error(f"Error in reconciliation scheduler loop: {str(e)}")

        await sleep(interval_seconds)
