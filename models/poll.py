"""投票（Poll） データモデル"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from models.action import PendingAction


class VoteChoice(Enum):
    APPROVE = "approve"
    REJECT = "reject"


class PollStatus(Enum):
    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not PollStatus.OPEN


# 投票の選択肢（Telegram の option_ids と同じ並び）
POLL_OPTIONS = {
    0: VoteChoice.APPROVE,
    1: VoteChoice.REJECT,
}
POLL_OPTION_LABELS = ["✅ 承認", "❌ 否決"]


@dataclass
class Poll:
    external_id: str
    action_id: str
    chat_id: int
    required_votes: int
    message_id: Optional[int] = None
    progress_message_id: Optional[int] = None  # 進捗表示メッセージ（投票メッセージ自体は編集できない）
    votes: Dict[str, VoteChoice] = field(default_factory=dict)
    status: PollStatus = PollStatus.OPEN
    opened_at: datetime = field(default_factory=datetime.now)
    deadline: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    degraded_quorum: bool = False  # メンバー数取得失敗で required_votes=1 に縮退

    def __post_init__(self):
        if self.required_votes < 1:
            raise ValueError("required_votes must be >= 1")

    def to_dict(self) -> dict:
        return {
            "external_id": self.external_id,
            "action_id": self.action_id,
            "chat_id": self.chat_id,
            "message_id": self.message_id,
            "progress_message_id": self.progress_message_id,
            "required_votes": self.required_votes,
            "votes": {k: v.value for k, v in self.votes.items()},
            "status": self.status.value,
            "opened_at": self.opened_at.isoformat(),
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "degraded_quorum": self.degraded_quorum,
        }


@dataclass(frozen=True)
class PollSnapshot:
    """ロック外に持ち出すための投票状況のコピー"""
    action_id: str
    external_id: str
    chat_id: int
    message_id: Optional[int]
    progress_message_id: Optional[int]
    status: PollStatus
    total: int
    approve: int
    reject: int
    required_votes: int

    def to_dict(self) -> dict:
        return {
            "action_id": self.action_id,
            "external_id": self.external_id,
            "chat_id": self.chat_id,
            "status": self.status.value,
            "total": self.total,
            "approve": self.approve,
            "reject": self.reject,
            "required_votes": self.required_votes,
        }


@dataclass(frozen=True)
class ResolvedAction:
    """解決済みでレジストリから取り出されたアクション。保持者だけがディスパッチできる"""
    action: PendingAction
    poll: Poll

    @property
    def status(self) -> PollStatus:
        return self.poll.status


@dataclass(frozen=True)
class VoteResult:
    found: bool
    snapshot: Optional[PollSnapshot] = None
    resolved: Optional[ResolvedAction] = None
    changed: bool = False

    @classmethod
    def not_found(cls) -> "VoteResult":
        return cls(found=False)
