"""Voteshare -- Observability package.

Prometheus metrics for the relay.
"""

from voteshare.observability.metrics import VoteShareMetrics

__all__: list[str] = [
    "VoteShareMetrics",
]
