"""
Group Vote - ロガーユーティリティ
ファイル出力（logs/group_vote.log）とコンソール出力を提供する。
Bot トークンや API キーはログに出力される前に伏せ字にする。
"""
import os
import logging
from logging.handlers import RotatingFileHandler

_DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs")
_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# 伏せ字対象の環境変数
_SECRET_ENV_KEYS = ("TELEGRAM_BOT_TOKEN", "KANA_LABS_API_KEY", "TELEGRAM_WEBHOOK_SECRET")


class SecretMaskFilter(logging.Filter):
    """ログメッセージ中の秘密情報を *** に置き換える"""

    def __init__(self, secrets=None):
        super().__init__()
        if secrets is None:
            secrets = [os.getenv(key, "") for key in _SECRET_ENV_KEYS]
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, "***")
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def get_logger(name: str) -> logging.Logger:
    """
    名前付きロガーを取得する。

    ファイル（DEBUG以上、最大5MB×3世代）とコンソール（LOG_LEVEL、既定INFO）に出力する。
    LOG_DIR でログディレクトリを変更できる。

    Args:
        name: ロガー名（例: "ApprovalEngine", "TelegramService"）
    """
    logger = logging.getLogger(name)

    # 既にハンドラが設定されている場合はそのまま返す
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    log_dir = os.getenv("LOG_DIR", _DEFAULT_LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(_FORMAT)
    mask = SecretMaskFilter()

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "group_vote.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        handler.addFilter(mask)
        logger.addHandler(handler)

    return logger
