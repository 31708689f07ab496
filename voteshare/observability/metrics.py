"""Prometheus metrics for the vote relay.

What is worth watching on a relay node:
- votes refused because the buffer was full (poll-interval too long)
- batches lost to broker failures
- decode failures on the receiving side (format drift between nodes)
- buffer depth and subscription state
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Info, start_http_server

logger = logging.getLogger(__name__)


class VoteShareMetrics:
    """Prometheus metrics for one relay instance.

    Each instance owns its registry so several relays (or tests) can live
    in one process without duplicate-registration errors.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._started = False

        # === Producer ===
        self.votes_offered = Counter(
            'voteshare_votes_offered_total',
            'Votes handed to the broadcast buffer',
            registry=self.registry,
        )

        self.votes_rejected = Counter(
            'voteshare_votes_rejected_total',
            'Votes refused because the buffer was full',
            registry=self.registry,
        )

        self.votes_published = Counter(
            'voteshare_votes_published_total',
            'Votes published to the broker channel',
            registry=self.registry,
        )

        self.batches_failed = Counter(
            'voteshare_batches_failed_total',
            'Publish batches lost to broker errors',
            registry=self.registry,
        )

        self.votes_dropped = Counter(
            'voteshare_votes_dropped_total',
            'Votes dropped by the producer',
            ['reason'],
            registry=self.registry,
        )

        self.buffer_size = Gauge(
            'voteshare_buffer_size',
            'Votes waiting in the broadcast buffer',
            registry=self.registry,
        )

        # === Consumer ===
        self.votes_received = Counter(
            'voteshare_votes_received_total',
            'Messages received on the broker channel',
            registry=self.registry,
        )

        self.votes_dispatched = Counter(
            'voteshare_votes_dispatched_total',
            'Decoded votes handed to the dispatch callback',
            registry=self.registry,
        )

        self.decode_errors = Counter(
            'voteshare_decode_errors_total',
            'Channel messages that could not be decoded',
            registry=self.registry,
        )

        self.subscribed = Gauge(
            'voteshare_subscribed',
            'Channel subscription state (1=subscribed, 0=not)',
            registry=self.registry,
        )

        # === Build Info ===
        self.build_info = Info(
            'voteshare_build',
            'Build information',
            registry=self.registry,
        )

    def start_server(self, port: int = 8000):
        """Start Prometheus HTTP server."""
        if self._started:
            return
        try:
            start_http_server(port, registry=self.registry)
            self._started = True
            logger.info("Prometheus metrics server started on port %d", port)
        except OSError as e:
            logger.error("Failed to start metrics server: %s", e)

    def set_build_info(self, version: str, mode: str):
        self.build_info.info({
            'version': version,
            'mode': mode,
        })
