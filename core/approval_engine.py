"""
Group Vote - 承認エンジン
アクション提案 → 投票作成 → 投票集計 → 解決 → 実行/報告 の流れを制御する。

投票による解決と期限による解決は PendingActionRegistry のロックで直列化され、
どちらか一方だけが ResolvedAction を受け取ってディスパッチする。
ネットワーク呼び出し（Telegram / 実行器）はロックの外で行う。
"""
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import gevent

from config import VotingSettings
from core.errors import OracleError, TransportError
from core.quorum import required_votes
from core.registry import PendingActionRegistry
from models.action import PendingAction, build_payload, parse_kind
from models.poll import (
    POLL_OPTION_LABELS,
    POLL_OPTIONS,
    Poll,
    PollSnapshot,
    ResolvedAction,
    VoteResult,
)
from services.telegram_service import GROUP_CHAT_TYPES
from utils.logger import get_logger

logger = get_logger("ApprovalEngine")


@dataclass
class ProposalResult:
    ok: bool
    action_id: Optional[str] = None
    snapshot: Optional[PollSnapshot] = None
    degraded_quorum: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "action_id": self.action_id,
            "poll": self.snapshot.to_dict() if self.snapshot else None,
            "degraded_quorum": self.degraded_quorum,
            "error": self.error,
        }


class GroupApprovalEngine:
    """グループ投票によるアクション承認エンジン"""

    def __init__(
        self,
        transport: Any,
        dispatcher: Any,
        settings: VotingSettings = None,
        registry: PendingActionRegistry = None,
        timer_factory: Callable = gevent.spawn_later,
        emit_callback: Callable = None,
    ):
        """
        Args:
            transport: 投票の作成・メッセージ送信・メンバー数取得を行う送信先（TelegramService）
            dispatcher: ActionDispatcher インスタンス
            settings: 投票パラメータ（実行時に変更可能）
            registry: PendingActionRegistry（省略時は新規作成）
            timer_factory: (seconds, func, *args) -> kill() を持つタイマー
            emit_callback: WebSocketイベント送信用コールバック
        """
        self.transport = transport
        self.dispatcher = dispatcher
        self.settings = settings if settings is not None else VotingSettings()
        self.registry = registry if registry is not None else PendingActionRegistry()
        self.timer_factory = timer_factory
        self.emit = emit_callback
        self._timers: Dict[str, Any] = {}
        self._timers_lock = threading.Lock()

    def _notify(self, event: str, data: dict):
        """WebSocketイベントを送信する（コールバックが設定されている場合）"""
        if self.emit:
            try:
                self.emit(event, data)
            except Exception as e:
                logger.warning("Failed to emit event %s: %s", event, e)

    def _send(self, chat_id: int, text: str) -> Optional[int]:
        try:
            return self.transport.send_message(chat_id, text)
        except Exception as e:
            logger.error("Failed to send message to chat %s: %s", chat_id, e)
            return None

    # ------------------------------------------------------------------
    # 提案
    # ------------------------------------------------------------------
    def propose(self, kind, payload, origin_chat: int, proposed_by: str = None) -> ProposalResult:
        """
        アクションを提案し、投票を開始する。

        Args:
            kind: ActionKind または "place_order" などの文字列
            payload: 型付きペイロード、または辞書
            origin_chat: 投票を投稿するチャットID
            proposed_by: 提案者（表示用）
        Returns:
            ProposalResult（投票作成に失敗した場合は ok=False、アクションは登録されない）

        Raises:
            ValueError: kind / payload が不正
        """
        kind = parse_kind(kind)
        if isinstance(payload, dict):
            payload = build_payload(kind, payload)

        action = PendingAction(
            id=str(uuid.uuid4()),
            kind=kind,
            payload=payload,
            origin_chat=origin_chat,
            proposed_by=proposed_by,
        )

        try:
            is_group, member_count = self._lookup_chat(origin_chat)
            degraded = False
        except OracleError as e:
            logger.warning("Quorum sizing degraded for chat %s: %s", origin_chat, e)
            is_group, member_count, degraded = True, None, True
        needed = required_votes(is_group, member_count, self.settings)

        question = f"[承認依頼] {action.describe()}"
        try:
            handle = self.transport.create_poll(origin_chat, question, POLL_OPTION_LABELS)
        except Exception as e:
            error = TransportError(f"Failed to create poll: {e}")
            logger.error("Proposal [%s] not registered: %s", action.id, error)
            self._send(origin_chat, f"投票を作成できませんでした: {action.describe()}\n{e}")
            return ProposalResult(ok=False, error=str(error))

        window = self.settings.voting_window_seconds
        opened_at = datetime.now()
        poll = Poll(
            external_id=str(handle["poll_id"]),
            action_id=action.id,
            chat_id=origin_chat,
            required_votes=needed,
            message_id=handle.get("message_id"),
            opened_at=opened_at,
            deadline=opened_at + timedelta(seconds=window) if window > 0 else None,
            degraded_quorum=degraded,
        )
        self.registry.register(action, poll)
        if window > 0:
            self._start_timer(action.id, window)

        logger.info(
            "Action proposed [%s] %s chat=%s members=%s required=%d poll=%s",
            action.id, kind.value, origin_chat, member_count, needed, poll.external_id,
        )

        if degraded:
            self._send(
                origin_chat,
                "⚠️ メンバー数を取得できなかったため、必要票数を1に縮退しています。"
                "この提案はグループの合意を保証しません。",
            )

        snapshot = self.registry.snapshot(action.id)
        if snapshot is not None:
            message_id = self._send(origin_chat, self._progress_text(action, snapshot))
            if message_id is not None:
                self.registry.attach_progress_message(action.id, message_id)
            snapshot = self.registry.snapshot(action.id) or snapshot

        self._notify("action_proposed", {
            "action": action.to_dict(),
            "poll": snapshot.to_dict() if snapshot else None,
        })
        return ProposalResult(ok=True, action_id=action.id, snapshot=snapshot, degraded_quorum=degraded)

    def _lookup_chat(self, chat_id: int):
        """
        メンバー数とチャット種別を取得する。

        Returns:
            (is_group, member_count)。個人チャットの場合 member_count は None

        Raises:
            OracleError: チャット情報を取得できない
        """
        try:
            chat_type = self.transport.get_chat_type(chat_id)
            if chat_type not in GROUP_CHAT_TYPES:
                return False, None
            return True, int(self.transport.get_member_count(chat_id))
        except Exception as e:
            raise OracleError(f"Member count unavailable: {e}") from e

    # ------------------------------------------------------------------
    # 投票
    # ------------------------------------------------------------------
    def handle_vote(self, external_id: str, voter_id, option_ids: List[int]) -> VoteResult:
        """
        投票イベントを処理する。例外は送出しない。

        Args:
            external_id: Telegram の poll_id
            voter_id: 投票者のユーザーID
            option_ids: 選択肢のインデックス（空リストは投票の取り消し）
        """
        voter_id = str(voter_id)
        try:
            if not option_ids:
                result = self.registry.record_retraction(external_id, voter_id)
            else:
                choice = POLL_OPTIONS.get(option_ids[0])
                if choice is None:
                    logger.warning("Unknown option %s on poll %s", option_ids, external_id)
                    action = self.registry.find_by_external_id(external_id)
                    if action is None:
                        return VoteResult.not_found()
                    return VoteResult(found=True, snapshot=self.registry.snapshot(action.id))
                result = self.registry.record_vote(external_id, voter_id, choice)
        except Exception:
            logger.exception("Failed to record vote on poll %s", external_id)
            return VoteResult.not_found()

        if not result.found:
            logger.debug("Stale vote ignored: poll=%s voter=%s", external_id, voter_id)
            return result

        if result.resolved is not None:
            self._cancel_timer(result.resolved.action.id)
            self._finish(result.resolved, result.snapshot)
        elif result.changed:
            self._update_progress(result.snapshot)
        return result

    def _update_progress(self, snapshot: PollSnapshot):
        action = self.registry.get(snapshot.action_id)
        if action is not None and snapshot.progress_message_id is not None:
            try:
                self.transport.edit_message(
                    snapshot.chat_id, snapshot.progress_message_id,
                    self._progress_text(action, snapshot),
                )
            except Exception as e:
                logger.warning("Failed to update progress [%s]: %s", snapshot.action_id, e)
        self._notify("voting_update", snapshot.to_dict())

    def _progress_text(self, action: PendingAction, snapshot: PollSnapshot) -> str:
        lines = [
            f"📊 投票状況: {snapshot.total}/{snapshot.required_votes}",
            f"賛成 {snapshot.approve} / 反対 {snapshot.reject}",
            f"対象: {action.describe()}",
        ]
        if action.proposed_by:
            lines.append(f"提案者: {action.proposed_by}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # 期限
    # ------------------------------------------------------------------
    def _start_timer(self, action_id: str, seconds: float):
        timer = self.timer_factory(seconds, self._on_deadline, action_id)
        with self._timers_lock:
            self._timers[action_id] = timer
        # 登録からタイマー保存までの間に投票で解決済みになった場合
        if self.registry.get(action_id) is None:
            self._cancel_timer(action_id)

    def _cancel_timer(self, action_id: str):
        with self._timers_lock:
            timer = self._timers.pop(action_id, None)
        if timer is not None:
            timer.kill(block=False)

    def _on_deadline(self, action_id: str):
        """期限タイマーのコールバック。既に解決済みなら何もしない"""
        with self._timers_lock:
            self._timers.pop(action_id, None)

        try:
            resolved = self.registry.expire(action_id, self.settings.approval_threshold)
            if resolved is None:
                return
            snapshot = self.registry.state_machine.get_voting_status(resolved.poll)
            logger.info("Deadline reached [%s]: %s", action_id, resolved.status.value)
            self._finish(resolved, snapshot)
        except Exception:
            logger.exception("Deadline handling failed [%s]", action_id)

    # ------------------------------------------------------------------
    # 解決
    # ------------------------------------------------------------------
    def _finish(self, resolved: ResolvedAction, snapshot: PollSnapshot):
        poll = resolved.poll
        if poll.message_id is not None:
            try:
                self.transport.stop_poll(poll.chat_id, poll.message_id)
            except Exception as e:
                logger.warning("Failed to stop poll %s: %s", poll.external_id, e)

        self.dispatcher.dispatch(resolved.action, resolved.status, snapshot)

    def pending_timers(self) -> int:
        with self._timers_lock:
            return len(self._timers)

    def shutdown(self):
        """全タイマーを停止する（承認待ちアクションは破棄されないが、期限解決は行われなくなる）"""
        with self._timers_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.kill(block=False)
        logger.info("ApprovalEngine shut down (%d timers cancelled)", len(timers))
