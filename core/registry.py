"""承認待ちアクション管理 - PendingActionRegistry"""
import threading
from typing import Dict, List, Optional

from core.errors import StaleVoteError
from core.voting import PollStateMachine
from models.action import PendingAction
from models.poll import Poll, PollSnapshot, ResolvedAction, VoteChoice, VoteResult


class PendingActionRegistry:
    """
    承認待ちアクションと投票の対応をプロセス内で保持する。

    すべての変更（登録・投票・解決・削除）は1つのロックで直列化する。
    ロック内ではネットワーク呼び出しを行わない。
    投票が解決した場合は同じクリティカルセクション内でエントリを取り除き、
    ResolvedAction を受け取った呼び出し元だけがディスパッチできるようにする。
    """

    def __init__(self, state_machine: PollStateMachine = None):
        self.state_machine = state_machine or PollStateMachine()
        self._lock = threading.Lock()
        self._actions: Dict[str, PendingAction] = {}
        self._polls: Dict[str, Poll] = {}          # action_id -> Poll
        self._by_external_id: Dict[str, str] = {}  # external_id -> action_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def register(self, action: PendingAction, poll: Poll):
        """
        アクションと投票のペアを登録する。

        Raises:
            ValueError: action_id / external_id が既に登録済み、またはペアの不整合
        """
        if poll.action_id != action.id:
            raise ValueError("poll.action_id does not match action.id")

        with self._lock:
            if action.id in self._actions:
                raise ValueError(f"Action already registered: {action.id}")
            if poll.external_id in self._by_external_id:
                raise ValueError(f"Poll already registered: {poll.external_id}")
            self._actions[action.id] = action
            self._polls[action.id] = poll
            self._by_external_id[poll.external_id] = action.id

    def record_vote(self, external_id: str, voter_id: str, choice: VoteChoice) -> VoteResult:
        """
        投票を記録する。

        未登録・解決済みの external_id の場合は not_found を返し、状態は変更しない。
        """
        with self._lock:
            action_id = self._by_external_id.get(str(external_id))
            if action_id is None:
                return VoteResult.not_found()

            poll = self._polls[action_id]
            status = self.state_machine.cast_vote(poll, voter_id, choice)
            snapshot = self.state_machine.get_voting_status(poll)
            resolved = self._pop(action_id) if status is not None else None

        return VoteResult(found=True, snapshot=snapshot, resolved=resolved, changed=True)

    def record_retraction(self, external_id: str, voter_id: str) -> VoteResult:
        """投票の取り消しを記録する"""
        with self._lock:
            action_id = self._by_external_id.get(str(external_id))
            if action_id is None:
                return VoteResult.not_found()

            poll = self._polls[action_id]
            changed = self.state_machine.retract_vote(poll, voter_id)
            snapshot = self.state_machine.get_voting_status(poll)

        return VoteResult(found=True, snapshot=snapshot, changed=changed)

    def attach_progress_message(self, action_id: str, message_id: int) -> bool:
        """進捗表示メッセージを紐付ける。既に解決済みなら False"""
        with self._lock:
            poll = self._polls.get(action_id)
            if poll is None:
                return False
            poll.progress_message_id = message_id
            return True

    def expire(self, action_id: str, approval_threshold: float) -> Optional[ResolvedAction]:
        """
        投票期限による解決。解決できた場合のみエントリを取り除いて返す。
        既に投票で解決・削除済みなら None。
        """
        with self._lock:
            poll = self._polls.get(action_id)
            if poll is None:
                return None
            status = self.state_machine.resolve_on_deadline(poll, approval_threshold)
            if status is None:
                return None
            return self._pop(action_id)

    def take(self, action_id: str) -> Optional[ResolvedAction]:
        """エントリを取り出す。2回目以降は None"""
        with self._lock:
            if action_id not in self._actions:
                return None
            return self._pop(action_id)

    def evict(self, action_id: str) -> bool:
        """エントリを削除する。削除できた場合のみ True"""
        return self.take(action_id) is not None

    def get(self, action_id: str) -> Optional[PendingAction]:
        with self._lock:
            return self._actions.get(action_id)

    def find_by_external_id(self, external_id: str) -> Optional[PendingAction]:
        with self._lock:
            action_id = self._by_external_id.get(str(external_id))
            return self._actions.get(action_id) if action_id else None

    def require(self, external_id: str) -> PendingAction:
        """
        external_id に対応するアクションを返す。

        Raises:
            StaleVoteError: 対応する投票が存在しない
        """
        action = self.find_by_external_id(external_id)
        if action is None:
            raise StaleVoteError(str(external_id))
        return action

    def snapshot(self, action_id: str) -> Optional[PollSnapshot]:
        with self._lock:
            poll = self._polls.get(action_id)
            if poll is None:
                return None
            return self.state_machine.get_voting_status(poll)

    def pending(self) -> List[dict]:
        """承認待ち一覧（REST API 向け）"""
        with self._lock:
            return [
                {
                    "action": action.to_dict(),
                    "poll": self.state_machine.get_voting_status(self._polls[action_id]).to_dict(),
                }
                for action_id, action in self._actions.items()
            ]

    def _pop(self, action_id: str) -> ResolvedAction:
        # ロック保持中に呼ぶこと
        action = self._actions.pop(action_id)
        poll = self._polls.pop(action_id)
        self._by_external_id.pop(poll.external_id, None)
        return ResolvedAction(action=action, poll=poll)
