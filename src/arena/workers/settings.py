"""arq worker settings module.

Import path for arq CLI: arq arena.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from arena.config import get_settings
from arena.workers.jobs import (
    archive_contests,
    check_fair_play,
    create_contest,
    shutdown,
    startup,
    update_leaderboard,
)


class WorkerSettings:
    """arq worker settings for the contest engine."""

    functions = [create_contest, update_leaderboard, check_fair_play, archive_contests]
    cron_jobs = [
        cron(update_leaderboard, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
        cron(archive_contests, hour=3, minute=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 600
