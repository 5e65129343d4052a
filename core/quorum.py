"""定足数の計算"""
import math
from typing import Optional

from config import VotingSettings


def required_votes(is_group_chat: bool, member_count: Optional[int], settings: VotingSettings) -> int:
    """
    投票の解決に必要な票数を返す。

    - 個人チャット: 1（本人の1票で決定）
    - グループ: ceil(member_count * quorum_fraction) を [min_votes, max_votes] に丸める
    - メンバー数不明（None）: 1 に縮退する。警告は呼び出し側が行う

    Args:
        is_group_chat: グループ/スーパーグループなら True
        member_count: チャットのメンバー数（取得失敗時は None）
        settings: 投票パラメータ
    Returns:
        必要票数（常に1以上）
    """
    if not is_group_chat or member_count is None:
        return 1

    # 浮動小数の誤差で必要票数が1票増えないよう丸める
    needed = math.ceil(round(member_count * settings.quorum_fraction, 9))
    needed = max(settings.min_votes, min(settings.max_votes, needed))
    return max(1, needed)
