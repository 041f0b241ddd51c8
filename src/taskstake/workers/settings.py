"""arq worker settings module.

Import path for arq CLI: arq taskstake.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from taskstake.config import get_settings
from taskstake.workers.settlement import settlement_shutdown, settlement_startup, sweep_challenges

_settings = get_settings()


def sweep_minutes(interval: int) -> set[int]:
    """Cron minutes for a sweep every ``interval`` minutes (clamped to 1..60)."""
    interval = min(max(interval, 1), 60)
    return set(range(0, 60, interval))


class WorkerSettings:
    """arq worker settings for the challenge settlement scheduler."""

    functions = [sweep_challenges]
    cron_jobs = [
        cron(sweep_challenges, minute=sweep_minutes(_settings.sweep_interval_minutes), run_at_startup=True),
    ]
    on_startup = settlement_startup
    on_shutdown = settlement_shutdown
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    max_jobs = 4
    job_timeout = 300
