"""
Group Vote - Kana Labs Perps APIラッパー
注文・決済・TP/SL変更・入出金のトランザクションペイロードを取得する
"""
import requests

from config import Config
from utils.logger import get_logger

logger = get_logger("KanaLabsService")


class KanaLabsServiceError(Exception):
    """Kana Labs API固有のエラー"""
    pass


def _side_flag(side: str) -> bool:
    # Kana Labs は long=true / short=false
    return side == "long"


class KanaLabsService:
    """Kana Labs Perps の REST API ラッパー"""

    def __init__(self, api_key: str = None, base_url: str = None, timeout: int = 15):
        self.api_key = api_key or Config.KANA_LABS_API_KEY
        self.base_url = (base_url or Config.kana_labs_base_url()).rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"x-api-key": self.api_key})

        logger.info("KanaLabsService initialized [%s] base_url=%s", Config.APTOS_NETWORK, self.base_url)

    # ------------------------------------------------------------------
    # 内部ヘルパー
    # ------------------------------------------------------------------
    def _request(self, method: str, endpoint: str, params: dict = None):
        """
        HTTP共通リクエストを実行する。

        Args:
            method: "GET" or "POST"
            endpoint: APIエンドポイント（例: "/placeLimitOrder"）
            params: GET はクエリ、POST は JSON ボディ

        Returns:
            レスポンスの data 部分

        Raises:
            KanaLabsServiceError: API呼び出し失敗時
        """
        if not self.api_key:
            raise KanaLabsServiceError("KANA_LABS_API_KEY is not configured")

        params = params or {}
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s %s params=%s", method, endpoint, params)

        try:
            if method == "GET":
                resp = self._session.get(url, params=params, timeout=self.timeout)
            elif method == "POST":
                resp = self._session.post(url, json=params, timeout=self.timeout)
            else:
                raise KanaLabsServiceError(f"Unsupported HTTP method: {method}")
        except requests.exceptions.RequestException as e:
            logger.error("Request failed: %s %s - %s", method, endpoint, e)
            raise KanaLabsServiceError(f"Network error: {e}") from e

        logger.debug("Response [%d]: %s", resp.status_code, resp.text[:500])

        if resp.status_code != 200:
            raise KanaLabsServiceError(f"API error {resp.status_code}: {resp.text}")

        try:
            body = resp.json()
        except ValueError:
            raise KanaLabsServiceError(f"Invalid JSON response from {endpoint}")

        if not body.get("success", False):
            raise KanaLabsServiceError(
                f"API error: {body.get('message') or 'request was not successful'}"
            )
        return body.get("data")

    # ------------------------------------------------------------------
    # 参照系
    # ------------------------------------------------------------------
    def get_market_info(self, market_id: str) -> list:
        return self._request("GET", "/getMarketInfo", {"marketId": market_id})

    def get_market_price(self, market_id: str) -> dict:
        return self._request("GET", "/getMarketPrice", {"marketId": market_id})

    def get_open_orders(self, user_address: str, market_id: str) -> list:
        return self._request("GET", "/getOpenOrders", {
            "userAddress": user_address,
            "marketId": market_id,
        })

    def get_positions(self, user_address: str, market_id: str) -> list:
        return self._request("GET", "/getPositions", {
            "userAddress": user_address,
            "marketId": market_id,
        })

    # ------------------------------------------------------------------
    # 取引系（署名前のトランザクションペイロードを返す）
    # ------------------------------------------------------------------
    def place_order(self, market_id: str, side: str, size: float,
                    order_type: str = "market", price: float = None) -> dict:
        """
        指値/成行注文のペイロードを取得する。

        Args:
            market_id: マーケットID
            side: "long" / "short"
            size: 数量
            order_type: "limit" / "market"
            price: 指値価格（limit の場合必須）

        Returns:
            {"function": str, "functionArguments": [...], "typeArguments": [...]}
        """
        params = {
            "marketId": str(market_id),
            "side": _side_flag(side),
            "size": str(size),
            "orderType": order_type,
        }
        if order_type == "limit":
            if price is None:
                raise KanaLabsServiceError("Price is required for limit orders")
            params["price"] = str(price)
            endpoint = "/placeLimitOrder"
        elif order_type == "market":
            endpoint = "/placeMarketOrder"
        else:
            raise KanaLabsServiceError(f"Invalid order type: {order_type}")

        logger.info("Place order payload: %s %s %s size=%s price=%s",
                    order_type, side, market_id, size, price)
        return self._request("POST", endpoint, params)

    def cancel_orders(self, order_ids: list) -> dict:
        return self._request("POST", "/cancelMultipleOrders", {"orderIds": list(order_ids)})

    def update_take_profit(self, market_id: str, side: str, price: float) -> dict:
        return self._request("GET", "/updateTakeProfit", {
            "marketId": str(market_id),
            "tradeSide": _side_flag(side),
            "newTakeProfitPrice": str(price),
        })

    def update_stop_loss(self, market_id: str, side: str, price: float) -> dict:
        return self._request("GET", "/updateStopLoss", {
            "marketId": str(market_id),
            "tradeSide": _side_flag(side),
            "newStopLossPrice": str(price),
        })

    def deposit(self, market_id: str, amount: float) -> dict:
        return self._request("POST", "/deposit", {"marketId": str(market_id), "amount": str(amount)})

    def withdraw(self, market_id: str, amount: float) -> dict:
        return self._request("POST", "/withdraw", {"marketId": str(market_id), "amount": str(amount)})
