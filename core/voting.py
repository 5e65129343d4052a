"""投票ロジック - VoteTally / PollStateMachine"""
from datetime import datetime
from typing import Dict, Optional

from models.poll import Poll, PollSnapshot, PollStatus, VoteChoice


class VoteTally:
    """
    投票者ごとに1票を保持する集計。

    同じ投票者が再投票した場合は後の票で上書きする（last vote wins）。
    """

    def __init__(self, votes: Dict[str, VoteChoice]):
        self.votes = votes

    def record(self, voter_id: str, choice: VoteChoice):
        self.votes[str(voter_id)] = choice

    def retract(self, voter_id: str) -> bool:
        return self.votes.pop(str(voter_id), None) is not None

    @property
    def total(self) -> int:
        return len(self.votes)

    @property
    def approve(self) -> int:
        return sum(1 for v in self.votes.values() if v is VoteChoice.APPROVE)

    @property
    def reject(self) -> int:
        return sum(1 for v in self.votes.values() if v is VoteChoice.REJECT)


def try_transition(poll: Poll, status: PollStatus) -> bool:
    """
    OPEN から終端状態への遷移を1回だけ許可する（check-and-set）。
    既に終端状態なら何もせず False を返す。
    """
    if not status.is_terminal:
        raise ValueError("Polls can only transition to a terminal status")
    if poll.status is not PollStatus.OPEN:
        return False
    poll.status = status
    poll.resolved_at = datetime.now()
    return True


class PollStateMachine:
    """
    単一の投票の状態遷移を管理する。

    呼び出し側（PendingActionRegistry）がロックを保持した状態で使う前提で、
    このクラス自体は同期処理のみを行う。
    """

    def cast_vote(self, poll: Poll, voter_id: str, choice: VoteChoice) -> Optional[PollStatus]:
        """
        投票を記録し、定足数に達したら解決する。

        Args:
            poll: 対象の投票
            voter_id: 投票者ID
            choice: APPROVE / REJECT
        Returns:
            この投票で解決した場合はその終端状態、未解決・解決済みなら None
        """
        if poll.status is not PollStatus.OPEN:
            return None

        tally = VoteTally(poll.votes)
        tally.record(voter_id, choice)

        status = self.check_consensus(poll)
        if status is PollStatus.OPEN:
            return None
        if try_transition(poll, status):
            return status
        return None

    def retract_vote(self, poll: Poll, voter_id: str) -> bool:
        """投票の取り消し。解決済みの投票には影響しない"""
        if poll.status is not PollStatus.OPEN:
            return False
        return VoteTally(poll.votes).retract(voter_id)

    def check_consensus(self, poll: Poll) -> PollStatus:
        """
        定足数に基づく判定。

        total < required_votes なら OPEN、
        達していれば approve > reject で APPROVED、それ以外（同数含む）は REJECTED。
        """
        tally = VoteTally(poll.votes)
        if tally.total < poll.required_votes:
            return PollStatus.OPEN
        if tally.approve > tally.reject:
            return PollStatus.APPROVED
        return PollStatus.REJECTED

    def resolve_on_deadline(self, poll: Poll, approval_threshold: float) -> Optional[PollStatus]:
        """
        投票期限到来時の解決。

        approve / max(total, 1) >= approval_threshold なら APPROVED、それ以外は EXPIRED。
        既に解決済みなら None（何もしない）。
        """
        if poll.status is not PollStatus.OPEN:
            return None

        tally = VoteTally(poll.votes)
        ratio = tally.approve / max(tally.total, 1)
        status = PollStatus.APPROVED if tally.approve and ratio >= approval_threshold else PollStatus.EXPIRED
        if try_transition(poll, status):
            return status
        return None

    def get_voting_status(self, poll: Poll) -> PollSnapshot:
        """投票状況のスナップショットを返す"""
        tally = VoteTally(poll.votes)
        return PollSnapshot(
            action_id=poll.action_id,
            external_id=poll.external_id,
            chat_id=poll.chat_id,
            message_id=poll.message_id,
            progress_message_id=poll.progress_message_id,
            status=poll.status,
            total=tally.total,
            approve=tally.approve,
            reject=tally.reject,
            required_votes=poll.required_votes,
        )
