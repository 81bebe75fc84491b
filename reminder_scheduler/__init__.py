"""Reminder scheduler for tasks, meetings and appointments."""

__version__ = "0.1.0"
