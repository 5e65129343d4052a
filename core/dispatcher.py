"""
Group Vote - アクション実行・結果通知
投票で承認されたアクションを種別ごとの実行処理に振り分け、結果をチャットへ報告する。
否決・期限切れの場合は結果の報告のみ行う。
"""
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from config import Config, find_market
from core.errors import ExecutionError
from models.action import ActionKind, PendingAction
from models.poll import PollSnapshot, PollStatus
from utils.logger import get_logger

logger = get_logger("ActionDispatcher")


@dataclass
class ExecutionResult:
    reference: str               # トランザクションハッシュ、または未署名ペイロードの関数名
    submitted: bool = False      # 署名・送信まで完了したか
    payload: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "submitted": self.submitted,
            "payload": self.payload,
        }


@dataclass
class DispatchRecord:
    """ディスパッチ履歴レコード"""
    action_id: str
    kind: str
    status: str                  # "approved" / "rejected" / "expired"
    origin_chat: int
    executed: bool = False
    result: Optional[ExecutionResult] = None
    error: Optional[str] = None
    dispatched_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "action_id": self.action_id,
            "kind": self.kind,
            "status": self.status,
            "origin_chat": self.origin_chat,
            "executed": self.executed,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "dispatched_at": self.dispatched_at.isoformat(),
        }


class KanaLabsExecutor:
    """
    承認済みアクションを Kana Labs Perps API で実行する。

    Kana Labs は署名前のトランザクションペイロードを返すため、
    submit_transaction（payload -> tx_hash）が与えられていれば署名・送信まで行う。
    未設定の場合はペイロードの関数名を実行参照として返す。
    """

    def __init__(
        self,
        kana_service,
        submit_transaction: Optional[Callable[[dict], str]] = None,
        max_order_size: float = None,
        testnet: bool = None,
    ):
        """
        Args:
            kana_service: KanaLabsService インスタンス
            submit_transaction: 署名・送信を行うコールバック（任意）
            max_order_size: 1注文あたりの数量上限（省略時は Config.MAX_ORDER_SIZE）
            testnet: マーケット検証に使うネットワーク（省略時は Config から判定）
        """
        self.kana = kana_service
        self.submit_transaction = submit_transaction
        self.max_order_size = max_order_size if max_order_size is not None else Config.MAX_ORDER_SIZE
        self.testnet = testnet
        self._handlers: Dict[ActionKind, Callable] = {
            ActionKind.PLACE_ORDER: self._place_order,
            ActionKind.CANCEL_ORDER: self._cancel_order,
            ActionKind.CLOSE_POSITION: self._close_position,
            ActionKind.SET_TAKE_PROFIT: self._set_take_profit,
            ActionKind.SET_STOP_LOSS: self._set_stop_loss,
            ActionKind.ADD_MARGIN: self._add_margin,
            ActionKind.DEPOSIT: self._deposit,
            ActionKind.WITHDRAW: self._withdraw,
        }

    def execute(self, action: PendingAction) -> ExecutionResult:
        """
        アクションを実行する。

        Raises:
            ExecutionError: 検証エラー、API エラー、送信エラー
        """
        handler = self._handlers.get(action.kind)
        if handler is None:
            raise ExecutionError(f"Unsupported action kind: {action.kind}")

        logger.info("Executing action [%s] %s: %s", action.id, action.kind.value, action.describe())
        try:
            payload = handler(action.payload)
        except ExecutionError:
            raise
        except Exception as e:
            logger.error("Action failed [%s]: %s", action.id, e)
            raise ExecutionError(str(e)) from e

        return self._submit(action, payload or {})

    def _submit(self, action: PendingAction, payload: dict) -> ExecutionResult:
        if self.submit_transaction is None:
            reference = payload.get("function", "")
            logger.info("Payload ready [%s]: %s (not submitted)", action.id, reference)
            return ExecutionResult(reference=reference, submitted=False, payload=payload)

        try:
            tx_hash = self.submit_transaction(payload)
        except Exception as e:
            logger.error("Transaction submission failed [%s]: %s", action.id, e)
            raise ExecutionError(f"Transaction submission failed: {e}") from e

        logger.info("Transaction submitted [%s]: %s", action.id, tx_hash)
        return ExecutionResult(reference=str(tx_hash), submitted=True, payload=payload)

    # ------------------------------------------------------------------
    # 検証
    # ------------------------------------------------------------------
    def _check_market(self, market_id: str):
        if market_id is not None and find_market(market_id, self.testnet) is None:
            raise ExecutionError(f"Unknown market: {market_id}")

    def _check_amount(self, amount: float):
        if not math.isfinite(amount) or amount <= 0:
            raise ExecutionError(f"Amount must be a positive finite number: {amount}")

    def _check_size(self, size: float):
        if not math.isfinite(size) or size <= 0:
            raise ExecutionError(f"Size must be a positive finite number: {size}")
        if size > self.max_order_size:
            raise ExecutionError(
                f"Size {size} exceeds MAX_ORDER_SIZE ({self.max_order_size})"
            )

    # ------------------------------------------------------------------
    # 種別ごとの実行
    # ------------------------------------------------------------------
    def _place_order(self, p) -> dict:
        self._check_market(p.market_id)
        self._check_size(p.size)
        if p.order_type == "limit" and not p.price:
            raise ExecutionError("Price is required for limit orders")
        return self.kana.place_order(p.market_id, p.side, p.size, p.order_type, p.price)

    def _cancel_order(self, p) -> dict:
        self._check_market(p.market_id)
        return self.kana.cancel_orders(p.order_ids)

    def _close_position(self, p) -> dict:
        # 反対売買の成行注文で決済する
        self._check_market(p.market_id)
        self._check_size(p.size)
        opposite = "short" if p.side == "long" else "long"
        return self.kana.place_order(p.market_id, opposite, p.size, "market")

    def _set_take_profit(self, p) -> dict:
        self._check_market(p.market_id)
        return self.kana.update_take_profit(p.market_id, p.side, p.price)

    def _set_stop_loss(self, p) -> dict:
        self._check_market(p.market_id)
        return self.kana.update_stop_loss(p.market_id, p.side, p.price)

    def _add_margin(self, p) -> dict:
        # Kana Labs ではマーケットへの入金がそのまま証拠金になる
        self._check_market(p.market_id)
        self._check_amount(p.amount)
        return self.kana.deposit(p.market_id, p.amount)

    def _deposit(self, p) -> dict:
        self._check_market(p.market_id)
        self._check_amount(p.amount)
        return self.kana.deposit(p.market_id, p.amount)

    def _withdraw(self, p) -> dict:
        self._check_market(p.market_id)
        self._check_amount(p.amount)
        return self.kana.withdraw(p.market_id, p.amount)


STATUS_LABELS = {
    PollStatus.APPROVED: "✅ 承認",
    PollStatus.REJECTED: "❌ 否決",
    PollStatus.EXPIRED: "⌛ 期限切れ",
}


class ActionDispatcher:
    """
    解決済みアクションのディスパッチ。

    1つのアクションにつき実行・否決報告のどちらか一方を一度だけ行う。
    二重実行の防止はレジストリ側の取り出しで保証される。
    ディスパッチ済みIDは直近 max_tracked 件だけ保持する予備のガード。
    """

    def __init__(self, executor, transport, emit_callback=None, max_tracked: int = 1000):
        """
        Args:
            executor: execute(PendingAction) -> ExecutionResult を持つ実行器
            transport: send_message(chat_id, text) を持つ送信先
            emit_callback: WebSocketイベント送信用コールバック
            max_tracked: 保持するディスパッチ済みIDの上限
        """
        self.executor = executor
        self.transport = transport
        self.emit = emit_callback
        self.history: List[DispatchRecord] = []
        self.max_tracked = max_tracked
        self._dispatched_ids: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def _notify(self, event: str, data: dict):
        """WebSocketイベントを送信する（コールバックが設定されている場合）"""
        if self.emit:
            try:
                self.emit(event, data)
            except Exception as e:
                logger.warning("Failed to emit event %s: %s", event, e)

    def _report(self, chat_id: int, text: str):
        try:
            self.transport.send_message(chat_id, text)
        except Exception as e:
            logger.error("Failed to report to chat %s: %s", chat_id, e)

    def dispatch(self, action: PendingAction, status: PollStatus,
                 snapshot: PollSnapshot = None) -> Optional[DispatchRecord]:
        """
        解決済みアクションを処理する。例外は送出しない。

        Args:
            action: 対象アクション
            status: 投票の終端状態
            snapshot: 解決時点の投票状況（通知文に使用）
        Returns:
            ディスパッチ履歴レコード。既にディスパッチ済みなら None
        """
        if not status.is_terminal:
            raise ValueError("Cannot dispatch an open poll")

        with self._lock:
            if action.id in self._dispatched_ids:
                logger.warning("Action [%s] already dispatched, ignoring", action.id)
                return None
            self._dispatched_ids[action.id] = None
            while len(self._dispatched_ids) > self.max_tracked:
                self._dispatched_ids.popitem(last=False)

        record = DispatchRecord(
            action_id=action.id,
            kind=action.kind.value,
            status=status.value,
            origin_chat=action.origin_chat,
        )
        tally = ""
        if snapshot is not None:
            tally = f"（賛成 {snapshot.approve} / 反対 {snapshot.reject}）"

        if status is PollStatus.APPROVED:
            self._report(action.origin_chat, f"{STATUS_LABELS[status]}{tally}: {action.describe()} を実行します")
            try:
                record.result = self.executor.execute(action)
                record.executed = True
            except ExecutionError as e:
                record.error = str(e)
            except Exception as e:
                logger.exception("Unexpected executor failure [%s]", action.id)
                record.error = str(e)

            if record.executed:
                done = "送信完了" if record.result.submitted else "ペイロード生成完了"
                self._report(action.origin_chat, f"実行完了: {action.describe()}\n{done}: {record.result.reference}")
            else:
                self._report(
                    action.origin_chat,
                    f"実行エラー: {action.describe()}\n{record.error}\n"
                    f"自動再試行は行いません。必要であれば再提案してください。",
                )
        else:
            self._report(action.origin_chat, f"{STATUS_LABELS[status]}{tally}: {action.describe()} は実行されません")

        logger.info("Dispatched [%s] status=%s executed=%s error=%s",
                    action.id, status.value, record.executed, record.error)
        self.history.append(record)
        self._notify("action_resolved", record.to_dict())
        return record

    def get_history(self, limit: int = 50) -> List[dict]:
        """ディスパッチ履歴を新しい順に返す"""
        return [r.to_dict() for r in reversed(self.history[-limit:])]
