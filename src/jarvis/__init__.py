"""Jarvis: personal-assistant notes and tasks with GitHub-backed sync."""

__version__ = "0.1.0"
