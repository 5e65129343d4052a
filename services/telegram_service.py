"""
Group Vote - Telegram Bot APIラッパー
投票の作成・進捗メッセージの編集・結果通知・メンバー数取得を行う
"""
import requests

from config import Config
from utils.logger import get_logger

logger = get_logger("TelegramService")

GROUP_CHAT_TYPES = ("group", "supergroup")


class TelegramServiceError(Exception):
    """Telegram Bot API固有のエラー"""
    pass


class TelegramService:
    """Telegram Bot API の REST ラッパー"""

    def __init__(self, bot_token: str = None, base_url: str = None, timeout: int = 10):
        self.bot_token = bot_token or Config.TELEGRAM_BOT_TOKEN
        self.base_url = (base_url or "https://api.telegram.org").rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

        logger.info("TelegramService initialized base_url=%s", self.base_url)

    # ------------------------------------------------------------------
    # 内部ヘルパー
    # ------------------------------------------------------------------
    def _request(self, method: str, params: dict = None):
        """
        Bot API メソッドを呼び出す。

        Args:
            method: Bot API メソッド名（例: "sendPoll"）
            params: リクエストパラメータ

        Returns:
            レスポンスの result 部分

        Raises:
            TelegramServiceError: API呼び出し失敗時
        """
        if not self.bot_token:
            raise TelegramServiceError("TELEGRAM_BOT_TOKEN is not configured")

        url = f"{self.base_url}/bot{self.bot_token}/{method}"
        logger.debug("POST %s params=%s", method, params)

        try:
            resp = self._session.post(url, json=params or {}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Request failed: %s - %s", method, e)
            raise TelegramServiceError(f"Request failed: {e}") from e

        logger.debug("Response [%d]: %s", resp.status_code, resp.text[:500])

        try:
            data = resp.json()
        except ValueError:
            raise TelegramServiceError(f"API error {resp.status_code}: {resp.text}")

        if resp.status_code != 200 or not data.get("ok"):
            raise TelegramServiceError(
                f"API error {resp.status_code}: {data.get('description', resp.text)}"
            )
        return data.get("result")

    # ------------------------------------------------------------------
    # 投票（Poll Transport）
    # ------------------------------------------------------------------
    def create_poll(self, chat_id: int, question: str, options: list) -> dict:
        """
        記名投票を作成する（poll_answer を受け取るため is_anonymous=False）。

        Returns:
            {"poll_id": str, "message_id": int}
        """
        result = self._request("sendPoll", {
            "chat_id": chat_id,
            "question": question[:300],
            "options": [{"text": o} for o in options],
            "is_anonymous": False,
            "allows_multiple_answers": False,
        })
        poll = result.get("poll") or {}
        if not poll.get("id"):
            raise TelegramServiceError("sendPoll response has no poll id")

        logger.info("Poll created chat=%s poll_id=%s message_id=%s",
                    chat_id, poll["id"], result.get("message_id"))
        return {"poll_id": poll["id"], "message_id": result.get("message_id")}

    def stop_poll(self, chat_id: int, message_id: int):
        """投票を締め切る（以降 Telegram 側でも投票不可）"""
        self._request("stopPoll", {"chat_id": chat_id, "message_id": message_id})

    def send_message(self, chat_id: int, text: str) -> int:
        """
        メッセージを送信する。

        Returns:
            送信したメッセージの message_id
        """
        result = self._request("sendMessage", {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        })
        return result.get("message_id")

    def edit_message(self, chat_id: int, message_id: int, text: str):
        """メッセージ本文を書き換える（投票の進捗表示用）"""
        try:
            self._request("editMessageText", {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
            })
        except TelegramServiceError as e:
            # 同一内容での編集は Telegram がエラーを返すが実害はない
            if "message is not modified" in str(e):
                logger.debug("Message %s not modified", message_id)
                return
            raise

    # ------------------------------------------------------------------
    # チャット情報（Group Membership Oracle）
    # ------------------------------------------------------------------
    def get_chat_type(self, chat_id: int) -> str:
        """チャット種別（"private" / "group" / "supergroup" / "channel"）"""
        result = self._request("getChat", {"chat_id": chat_id})
        return result.get("type", "private")

    def is_group_chat(self, chat_id: int) -> bool:
        return self.get_chat_type(chat_id) in GROUP_CHAT_TYPES

    def get_member_count(self, chat_id: int) -> int:
        count = self._request("getChatMemberCount", {"chat_id": chat_id})
        try:
            return int(count)
        except (TypeError, ValueError):
            raise TelegramServiceError(f"Invalid member count: {count}")

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------
    def set_webhook(self, url: str, secret_token: str = None) -> bool:
        params = {"url": url, "allowed_updates": ["message", "poll_answer"]}
        if secret_token:
            params["secret_token"] = secret_token
        self._request("setWebhook", params)
        logger.info("Webhook registered: %s", url)
        return True
