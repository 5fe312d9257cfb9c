"""Sync GitHub, Google Calendar and Readwise changes into a Thymer inbox queue."""

__version__ = "0.4.0"
