"""Background timers for the session engine.

Usage:
    from fscrape.scheduling import EngineScheduler

    scheduler = EngineScheduler()
    scheduler.add_interval_job(tick, job_id="heartbeat", seconds=5)
    scheduler.start()
"""

from fscrape.scheduling.scheduler import EngineScheduler

__all__ = ["EngineScheduler"]
