"""
Voteshare -- broker bus package.

Redis pub/sub is the only transport between relay nodes.  A node either
broadcasts locally received votes or receives votes from other nodes,
never both.

Quick start::

    from voteshare.bus import BrokerPool, VoteBuffer, VoteBroadcaster, VoteReceiver

    pool = BrokerPool("127.0.0.1", 6379)

    # Broadcast
    broadcaster = VoteBroadcaster(pool, VoteBuffer())
    await broadcaster.start()
    broadcaster.on_vote(vote)

    # Receive
    receiver = VoteReceiver(pool, dispatch=my_handler)
    await receiver.start()
"""

from voteshare.bus.buffer import VoteBuffer
from voteshare.bus.consumer import VoteReceiver
from voteshare.bus.pool import BrokerPool
from voteshare.bus.producer import VoteBroadcaster, effective_poll_interval

__all__: list[str] = [
    "BrokerPool",
    "VoteBuffer",
    "VoteBroadcaster",
    "VoteReceiver",
    "effective_poll_interval",
]
