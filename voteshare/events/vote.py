"""
Voteshare -- the Vote event.

A vote is produced by the upstream notification listener (Votifier) once
per incoming vote and is relayed, unchanged, to every other server in the
cluster.  All four fields are opaque text: ``timestamp`` in particular is
whatever format the voting site sent and is never parsed here.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class Vote(BaseModel):
    """Immutable vote record relayed over the broker channel.

    Field semantics:
        service_name:
            Name of the voting site that reported the vote.

        timestamp:
            Time of the vote as reported by the voting site.  Opaque.

        username:
            In-game name of the voter.

        address:
            Network address of the voter, typically ``"host:port"``.
    """

    service_name: str = Field(description="Voting site that reported the vote.")
    timestamp: str = Field(description="Opaque vote time from the voting site.")
    username: str = Field(description="In-game name of the voter.")
    address: str = Field(description="Voter address, usually host:port.")

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "json_schema_extra": {
            "title": "Voteshare Vote",
        },
    }

    def describe(self) -> str:
        """Return a compact one-line description for log messages."""
        return f"{self.username}@{self.service_name} ({self.address}, {self.timestamp})"
