"""承認エンジンのエラー定義"""


class GroupVoteError(Exception):
    """承認エンジン共通の基底エラー"""
    pass


class OracleError(GroupVoteError):
    """チャットのメンバー数・種別が取得できない"""
    pass


class TransportError(GroupVoteError):
    """投票の作成・編集・メッセージ送信に失敗"""
    pass


class StaleVoteError(GroupVoteError):
    """対応する投票が存在しない（解決済み・未登録）"""

    def __init__(self, external_id: str):
        super().__init__(f"No open poll for external id {external_id}")
        self.external_id = external_id


class ExecutionError(GroupVoteError):
    """承認済みアクションの実行に失敗"""
    pass
