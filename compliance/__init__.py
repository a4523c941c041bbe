"""
Compliance Package.

============================================================
PURPOSE
============================================================
Ongoing trading volume compliance for verified grants.

- TradingVolumeMonitor: warn-then-revoke state machine
- Scheduler / AsyncioCronScheduler: recurring execution
- GrantNotifier implementations for Telegram and Discord

============================================================
"""

from .messages import format_revocation_message, format_warning_message
from .monitor import ComplianceRunReport, TradingVolumeMonitor
from .notifiers import DiscordGrantNotifier, GrantNotifier, TelegramGrantNotifier
from .scheduler import (
    DEFAULT_SCHEDULE,
    AsyncioCronJob,
    AsyncioCronScheduler,
    CronExpression,
    ScheduledJob,
    Scheduler,
)


__all__ = [
    "format_revocation_message",
    "format_warning_message",
    "ComplianceRunReport",
    "TradingVolumeMonitor",
    "DiscordGrantNotifier",
    "GrantNotifier",
    "TelegramGrantNotifier",
    "DEFAULT_SCHEDULE",
    "AsyncioCronJob",
    "AsyncioCronScheduler",
    "CronExpression",
    "ScheduledJob",
    "Scheduler",
]
