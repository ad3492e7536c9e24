"""Fetch subscribed RSS/Atom feeds and mail each new item exactly once."""

__version__ = "0.1.0"
