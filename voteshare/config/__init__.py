"""Voteshare -- configuration."""

from voteshare.config.settings import VoteShareSettings, get_settings

__all__ = [
    "VoteShareSettings",
    "get_settings",
]
