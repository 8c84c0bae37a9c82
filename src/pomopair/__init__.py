"""Paired pomodoro timers with realtime partner state sync."""

__version__ = "0.1.0"
