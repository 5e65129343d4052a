"""承認待ちアクション データモデル"""
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union


class ActionKind(Enum):
    PLACE_ORDER = "place_order"
    CANCEL_ORDER = "cancel_order"
    CLOSE_POSITION = "close_position"
    SET_TAKE_PROFIT = "set_take_profit"
    SET_STOP_LOSS = "set_stop_loss"
    ADD_MARGIN = "add_margin"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


SIDES = ("long", "short")
ORDER_TYPES = ("limit", "market")


def _side(value) -> str:
    side = str(value or "").lower()
    if side not in SIDES:
        raise ValueError(f"Invalid side: {value}")
    return side


def _positive(name: str, value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number")
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"{name} must be a positive finite number")
    return number


def _market(value) -> str:
    if value in (None, ""):
        raise ValueError("market_id is required")
    return str(value)


@dataclass
class PlaceOrderPayload:
    market_id: str
    side: str  # "long" / "short"
    size: float
    order_type: str = "market"  # "limit" / "market"
    price: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PlaceOrderPayload":
        order_type = str(data.get("order_type", "market")).lower()
        if order_type not in ORDER_TYPES:
            raise ValueError(f"Invalid order_type: {order_type}")
        price = data.get("price")
        if order_type == "limit":
            price = _positive("price", price)
        elif price is not None:
            price = _positive("price", price)
        return cls(
            market_id=_market(data.get("market_id")),
            side=_side(data.get("side")),
            size=_positive("size", data.get("size")),
            order_type=order_type,
            price=price,
        )

    def describe(self) -> str:
        at = f" @ {self.price}" if self.price is not None else ""
        return f"{self.order_type.upper()} {self.side.upper()} {self.size} (market {self.market_id}){at}"


@dataclass
class CancelOrderPayload:
    order_ids: List[str]
    market_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CancelOrderPayload":
        order_ids = data.get("order_ids")
        if order_ids is None and data.get("order_id"):
            order_ids = [data["order_id"]]
        if not order_ids:
            raise ValueError("order_ids is required")
        market_id = data.get("market_id")
        return cls(
            order_ids=[str(o) for o in order_ids],
            market_id=str(market_id) if market_id else None,
        )

    def describe(self) -> str:
        return f"注文キャンセル {', '.join(self.order_ids)}"


@dataclass
class ClosePositionPayload:
    market_id: str
    side: str  # 決済対象ポジションの向き
    size: float
    trade_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ClosePositionPayload":
        return cls(
            market_id=_market(data.get("market_id")),
            side=_side(data.get("side")),
            size=_positive("size", data.get("size")),
            trade_id=data.get("trade_id"),
        )

    def describe(self) -> str:
        return f"ポジション決済 {self.side.upper()} {self.size} (market {self.market_id})"


@dataclass
class SetTakeProfitPayload:
    market_id: str
    side: str
    price: float

    @classmethod
    def from_dict(cls, data: dict) -> "SetTakeProfitPayload":
        return cls(
            market_id=_market(data.get("market_id")),
            side=_side(data.get("side")),
            price=_positive("price", data.get("price")),
        )

    def describe(self) -> str:
        return f"利確価格変更 {self.side.upper()} → {self.price} (market {self.market_id})"


@dataclass
class SetStopLossPayload:
    market_id: str
    side: str
    price: float

    @classmethod
    def from_dict(cls, data: dict) -> "SetStopLossPayload":
        return cls(
            market_id=_market(data.get("market_id")),
            side=_side(data.get("side")),
            price=_positive("price", data.get("price")),
        )

    def describe(self) -> str:
        return f"損切価格変更 {self.side.upper()} → {self.price} (market {self.market_id})"


@dataclass
class AddMarginPayload:
    market_id: str
    amount: float

    @classmethod
    def from_dict(cls, data: dict) -> "AddMarginPayload":
        return cls(
            market_id=_market(data.get("market_id")),
            amount=_positive("amount", data.get("amount")),
        )

    def describe(self) -> str:
        return f"証拠金追加 {self.amount} (market {self.market_id})"


@dataclass
class DepositPayload:
    market_id: str
    amount: float

    @classmethod
    def from_dict(cls, data: dict) -> "DepositPayload":
        return cls(
            market_id=_market(data.get("market_id")),
            amount=_positive("amount", data.get("amount")),
        )

    def describe(self) -> str:
        return f"入金 {self.amount} (market {self.market_id})"


@dataclass
class WithdrawPayload:
    market_id: str
    amount: float

    @classmethod
    def from_dict(cls, data: dict) -> "WithdrawPayload":
        return cls(
            market_id=_market(data.get("market_id")),
            amount=_positive("amount", data.get("amount")),
        )

    def describe(self) -> str:
        return f"出金 {self.amount} (market {self.market_id})"


ActionPayload = Union[
    PlaceOrderPayload,
    CancelOrderPayload,
    ClosePositionPayload,
    SetTakeProfitPayload,
    SetStopLossPayload,
    AddMarginPayload,
    DepositPayload,
    WithdrawPayload,
]

PAYLOAD_TYPES = {
    ActionKind.PLACE_ORDER: PlaceOrderPayload,
    ActionKind.CANCEL_ORDER: CancelOrderPayload,
    ActionKind.CLOSE_POSITION: ClosePositionPayload,
    ActionKind.SET_TAKE_PROFIT: SetTakeProfitPayload,
    ActionKind.SET_STOP_LOSS: SetStopLossPayload,
    ActionKind.ADD_MARGIN: AddMarginPayload,
    ActionKind.DEPOSIT: DepositPayload,
    ActionKind.WITHDRAW: WithdrawPayload,
}


def parse_kind(value) -> ActionKind:
    if isinstance(value, ActionKind):
        return value
    try:
        return ActionKind(str(value).lower())
    except ValueError:
        raise ValueError(f"Unknown action kind: {value}")


def build_payload(kind, data: dict) -> ActionPayload:
    """
    kind に対応する型付きペイロードを辞書から組み立てる。

    Raises:
        ValueError: 未知の kind、または必須パラメータの欠落・不正
    """
    kind = parse_kind(kind)
    return PAYLOAD_TYPES[kind].from_dict(data or {})


@dataclass
class PendingAction:
    id: str
    kind: ActionKind
    payload: ActionPayload
    origin_chat: int
    created_at: datetime = field(default_factory=datetime.now)
    proposed_by: Optional[str] = None

    def __post_init__(self):
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} requires {expected.__name__}, got {type(self.payload).__name__}"
            )

    def describe(self) -> str:
        return self.payload.describe()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": asdict(self.payload),
            "origin_chat": self.origin_chat,
            "created_at": self.created_at.isoformat(),
            "proposed_by": self.proposed_by,
        }
