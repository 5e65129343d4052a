"""
Group Vote - 設定管理
"""
import os
from dataclasses import dataclass, asdict
from dotenv import load_dotenv

load_dotenv()


class Config:
    """アプリケーション設定"""

    # Flask
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret-key")
    DEBUG = os.getenv("FLASK_DEBUG", "false").lower() == "true"

    # Telegram
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
    TELEGRAM_WEBHOOK_URL = os.getenv("TELEGRAM_WEBHOOK_URL", "")

    # Kana Labs / Aptos
    KANA_LABS_API_KEY = os.getenv("KANA_LABS_API_KEY", "")
    APTOS_NETWORK = os.getenv("APTOS_NETWORK", "mainnet").lower()
    if APTOS_NETWORK not in ("mainnet", "testnet", "devnet"):
        APTOS_NETWORK = "mainnet"
    APTOS_ADDRESS = os.getenv("APTOS_ADDRESS", "")

    # Trading Safety
    MAX_ORDER_SIZE = float(os.getenv("MAX_ORDER_SIZE", "1000"))

    # Voting（実行時に /api/settings から変更可能。再起動で初期値に戻る）
    QUORUM_FRACTION = float(os.getenv("QUORUM_FRACTION", "0.3"))
    MIN_VOTES = int(os.getenv("MIN_VOTES", "2"))
    MAX_VOTES = int(os.getenv("MAX_VOTES", "10"))
    VOTING_WINDOW_SECONDS = float(os.getenv("VOTING_WINDOW_SECONDS", "300"))
    APPROVAL_THRESHOLD = float(os.getenv("APPROVAL_THRESHOLD", "0.5"))

    @classmethod
    def is_testnet(cls) -> bool:
        return cls.APTOS_NETWORK != "mainnet"

    @classmethod
    def kana_labs_base_url(cls) -> str:
        return KANA_LABS_URLS[cls.APTOS_NETWORK]

    @classmethod
    def validate(cls) -> list:
        """未設定の必須項目を返す（空リストなら起動可能）"""
        errors = []
        if not cls.TELEGRAM_BOT_TOKEN:
            errors.append("TELEGRAM_BOT_TOKEN is not configured")
        if not cls.KANA_LABS_API_KEY:
            errors.append("KANA_LABS_API_KEY is not configured")
        if not cls.APTOS_ADDRESS:
            errors.append("APTOS_ADDRESS is not configured")
        return errors


# ============================================================
# Kana Labs Perps API エンドポイント
# ============================================================
KANA_LABS_URLS = {
    "mainnet": "https://perps-tradeapi.kana.trade",
    "testnet": "https://perps-tradeapi.kanalabs.io",
    "devnet": "https://perps-tradeapi.kanalabs.io",
}


# ============================================================
# 取引可能マーケット
# ============================================================
TESTNET_MARKETS = {
    "1338": {"asset": "APT-USD", "description": "Aptos-based trading market"},
    "1339": {"asset": "BTC-USD", "description": "Bitcoin-based trading market"},
    "1340": {"asset": "ETH-USD", "description": "Ethereum-based trading market"},
    "2387": {"asset": "SOL-USD", "description": "Solana-based trading market"},
}

MAINNET_MARKETS = {
    "14": {"asset": "APT-USD", "description": "Aptos-based trading market"},
    "15": {"asset": "BTC-USD", "description": "Bitcoin-based trading market"},
    "16": {"asset": "ETH-USD", "description": "Ethereum-based trading market"},
    "31": {"asset": "SOL-USD", "description": "Solana-based trading market"},
}


def get_markets(testnet: bool = None) -> dict:
    """ネットワークに応じたマーケット一覧を返す"""
    if testnet is None:
        testnet = Config.is_testnet()
    return TESTNET_MARKETS if testnet else MAINNET_MARKETS


def find_market(market_id: str, testnet: bool = None):
    """market_id からマーケット情報を取得する（見つからなければ None）"""
    return get_markets(testnet).get(str(market_id))


# ============================================================
# 投票パラメータ（実行時変更可・永続化なし）
# ============================================================
@dataclass
class VotingSettings:
    quorum_fraction: float = 0.3
    min_votes: int = 2
    max_votes: int = 10
    voting_window_seconds: float = 300
    approval_threshold: float = 0.5

    def __post_init__(self):
        self._validate()

    @classmethod
    def from_config(cls, config=Config) -> "VotingSettings":
        return cls(
            quorum_fraction=config.QUORUM_FRACTION,
            min_votes=config.MIN_VOTES,
            max_votes=config.MAX_VOTES,
            voting_window_seconds=config.VOTING_WINDOW_SECONDS,
            approval_threshold=config.APPROVAL_THRESHOLD,
        )

    def update(self, **changes) -> "VotingSettings":
        """
        設定を部分更新する。検証に失敗した場合は何も変更しない。

        Raises:
            ValueError: 未知のキー、または範囲外の値
        """
        unknown = set(changes) - set(asdict(self))
        if unknown:
            raise ValueError(f"Unknown voting settings: {', '.join(sorted(unknown))}")

        candidate = VotingSettings(**{**asdict(self), **changes})
        for key, value in asdict(candidate).items():
            setattr(self, key, value)
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    def _validate(self):
        self.quorum_fraction = float(self.quorum_fraction)
        self.min_votes = int(self.min_votes)
        self.max_votes = int(self.max_votes)
        self.voting_window_seconds = float(self.voting_window_seconds)
        self.approval_threshold = float(self.approval_threshold)

        if not 0 < self.quorum_fraction <= 1:
            raise ValueError("quorum_fraction must be in (0, 1]")
        if self.min_votes < 1:
            raise ValueError("min_votes must be >= 1")
        if self.max_votes < self.min_votes:
            raise ValueError("max_votes must be >= min_votes")
        if self.voting_window_seconds < 0:
            raise ValueError("voting_window_seconds must be >= 0")
        if not 0 <= self.approval_threshold <= 1:
            raise ValueError("approval_threshold must be in [0, 1]")
