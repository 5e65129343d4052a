"""Group Vote - データモデル"""
from models.action import ActionKind, PendingAction, build_payload
from models.poll import Poll, PollSnapshot, PollStatus, VoteChoice, VoteResult

__all__ = [
    "ActionKind",
    "PendingAction",
    "Poll",
    "PollSnapshot",
    "PollStatus",
    "VoteChoice",
    "VoteResult",
    "build_payload",
]
