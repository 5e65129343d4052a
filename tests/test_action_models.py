import pytest

from models.action import (
    ActionKind,
    DepositPayload,
    PendingAction,
    PlaceOrderPayload,
    build_payload,
)


def test_build_payload_for_each_kind():
    samples = {
        "place_order": {"market_id": "14", "side": "LONG", "size": "2", "order_type": "limit", "price": 9.5},
        "cancel_order": {"order_id": "o1"},
        "close_position": {"market_id": "14", "side": "short", "size": 1},
        "set_take_profit": {"market_id": "14", "side": "long", "price": 12},
        "set_stop_loss": {"market_id": "14", "side": "long", "price": 8},
        "add_margin": {"market_id": "14", "amount": 10},
        "deposit": {"market_id": "14", "amount": 10},
        "withdraw": {"market_id": "14", "amount": 10},
    }
    for kind, data in samples.items():
        payload = build_payload(kind, data)
        assert payload.describe()

    order = build_payload("place_order", samples["place_order"])
    assert order.side == "long"
    assert order.size == 2.0
    assert build_payload("cancel_order", {"order_id": "o1"}).order_ids == ["o1"]


@pytest.mark.parametrize("kind, data", [
    ("place_order", {"market_id": "14", "side": "long", "size": 1, "order_type": "limit"}),
    ("place_order", {"market_id": "14", "side": "long", "size": -1}),
    ("place_order", {"side": "long", "size": 1}),
    ("deposit", {"market_id": "14", "amount": "abc"}),
    ("place_order", {"market_id": "14", "side": "long", "size": "nan"}),
    ("place_order", {"market_id": "14", "side": "long", "size": "inf"}),
    ("withdraw", {"market_id": "14", "amount": "inf"}),
    ("add_margin", {"market_id": "14", "amount": float("nan")}),
    ("cancel_order", {}),
    ("unknown", {}),
])
def test_invalid_payloads(kind, data):
    with pytest.raises(ValueError):
        build_payload(kind, data)


def test_pending_action_requires_matching_payload_type():
    with pytest.raises(TypeError):
        PendingAction(
            id="a1",
            kind=ActionKind.PLACE_ORDER,
            payload=DepositPayload(market_id="14", amount=1),
            origin_chat=1,
        )


def test_pending_action_to_dict():
    action = PendingAction(
        id="a1",
        kind=ActionKind.PLACE_ORDER,
        payload=PlaceOrderPayload(market_id="14", side="long", size=1),
        origin_chat=-100,
        proposed_by="alice",
    )

    data = action.to_dict()

    assert data["kind"] == "place_order"
    assert data["payload"]["market_id"] == "14"
    assert data["proposed_by"] == "alice"
