"""Voteshare -- relay votes between game servers over Redis pub/sub."""

__version__ = "1.0.0"
