"""Group Vote - コアロジック"""
from core.approval_engine import GroupApprovalEngine, ProposalResult
from core.dispatcher import ActionDispatcher, KanaLabsExecutor
from core.registry import PendingActionRegistry
from core.voting import PollStateMachine, VoteTally

__all__ = [
    "ActionDispatcher",
    "GroupApprovalEngine",
    "KanaLabsExecutor",
    "PendingActionRegistry",
    "PollStateMachine",
    "ProposalResult",
    "VoteTally",
]
