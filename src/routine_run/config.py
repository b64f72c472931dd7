"""Configuration management for routine-run."""

import os
from dataclasses import dataclass
from pathlib import Path

import click
from dotenv import load_dotenv

from .models import Pace

DEFAULT_DB_PATH = Path.home() / ".routine-run" / "runs.db"


@dataclass(frozen=True)
class AnnouncementConfig:
    """Intervals and switches read by the announcement predicates on every tick."""

    milestone_interval_min: int = 5
    overtime_interval_min: int = 5
    milestones_enabled: bool = True
    overtime_reminders_enabled: bool = True


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


class RunConfig:
    """Runtime configuration from ROUTINE_RUN_* environment variables (and .env)."""

    def __init__(self):
        load_dotenv(Path.cwd() / ".env")
        self.milestone_interval = os.environ.get("ROUTINE_RUN_MILESTONE_INTERVAL", "5")
        self.overtime_interval = os.environ.get("ROUTINE_RUN_OVERTIME_INTERVAL", "5")
        self.milestones_enabled = _env_bool("ROUTINE_RUN_MILESTONES", True)
        self.overtime_reminders_enabled = _env_bool("ROUTINE_RUN_OVERTIME_REMINDERS", True)
        self.tick_seconds = os.environ.get("ROUTINE_RUN_TICK_SECONDS", "1")
        self.db_path = Path(os.environ.get("ROUTINE_RUN_DB", str(DEFAULT_DB_PATH))).expanduser()
        self.verbose = _env_bool("ROUTINE_RUN_VERBOSE", False)

    def validate(self) -> None:
        """Validate configuration."""
        for name in ("milestone_interval", "overtime_interval", "tick_seconds"):
            raw = getattr(self, name)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                raise click.ClickException(f"Invalid {name} '{raw}': expected a whole number")
            if value < 1:
                raise click.ClickException(f"Invalid {name} '{raw}': must be at least 1")
            setattr(self, name, value)

    @property
    def announcements(self) -> AnnouncementConfig:
        return AnnouncementConfig(
            milestone_interval_min=int(self.milestone_interval),
            overtime_interval_min=int(self.overtime_interval),
            milestones_enabled=self.milestones_enabled,
            overtime_reminders_enabled=self.overtime_reminders_enabled,
        )


def get_config() -> RunConfig:
    """Get a validated configuration instance."""
    config = RunConfig()
    config.validate()
    return config


def pace_option(f):
    """Decorator to add the pace option to commands."""
    return click.option(
        "--pace", "-p",
        type=click.Choice([p.value for p in Pace]),
        default=Pace.STEADY.value,
        help="Energy level for this run",
        show_default=True,
    )(f)


def verbose_option(f):
    """Decorator to add verbose option to commands."""
    return click.option(
        "--verbose", "-v",
        is_flag=True,
        help="Enable verbose output",
    )(f)
