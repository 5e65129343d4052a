from unittest.mock import MagicMock

import pytest

from services.kanalabs_service import KanaLabsService, KanaLabsServiceError

PAYLOAD = {"function": "0x1::market::place", "functionArguments": [], "typeArguments": []}


def make_response(body, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = str(body)
    return resp


def make_service():
    service = KanaLabsService(api_key="KEY", base_url="https://kana.test")
    service._session = MagicMock()
    return service


def test_limit_order_posts_to_limit_endpoint():
    service = make_service()
    service._session.post.return_value = make_response({"success": True, "message": "", "data": PAYLOAD})

    data = service.place_order("14", "short", 1.5, "limit", 10.25)

    assert data == PAYLOAD
    url = service._session.post.call_args[0][0]
    body = service._session.post.call_args[1]["json"]
    assert url == "https://kana.test/placeLimitOrder"
    assert body == {"marketId": "14", "side": False, "size": "1.5", "orderType": "limit", "price": "10.25"}


def test_market_order_endpoint():
    service = make_service()
    service._session.post.return_value = make_response({"success": True, "data": PAYLOAD})

    service.place_order("14", "long", 1)

    assert service._session.post.call_args[0][0] == "https://kana.test/placeMarketOrder"


def test_limit_order_requires_price():
    service = make_service()

    with pytest.raises(KanaLabsServiceError):
        service.place_order("14", "long", 1, "limit")
    service._session.post.assert_not_called()


def test_update_take_profit_uses_query_params():
    service = make_service()
    service._session.get.return_value = make_response({"success": True, "data": PAYLOAD})

    service.update_take_profit("14", "long", 12)

    params = service._session.get.call_args[1]["params"]
    assert params == {"marketId": "14", "tradeSide": True, "newTakeProfitPrice": "12"}


def test_unsuccessful_body_raises():
    service = make_service()
    service._session.post.return_value = make_response({"success": False, "message": "Insufficient balance"})

    with pytest.raises(KanaLabsServiceError, match="Insufficient balance"):
        service.withdraw("14", 100)


def test_http_error_raises():
    service = make_service()
    service._session.get.return_value = make_response({}, status=500)

    with pytest.raises(KanaLabsServiceError, match="500"):
        service.get_market_price("14")
