"""
Group Vote - メインアプリケーション
Flask + Flask-SocketIO による Telegram グループ承認トレードボット
"""
import os

from gevent import monkey
monkey.patch_all()

from flask import Flask, request, jsonify
from flask_socketio import SocketIO, emit

from config import Config, VotingSettings, get_markets
from core.approval_engine import GroupApprovalEngine
from core.dispatcher import ActionDispatcher, KanaLabsExecutor
from services.kanalabs_service import KanaLabsService
from services.telegram_service import TelegramService
from utils.logger import get_logger

logger = get_logger("app")

# ============================================================
# Flask アプリケーション初期化
# ============================================================
app = Flask(__name__)
app.config.from_object(Config)

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode="gevent",
)

# ============================================================
# サービスの初期化
# ============================================================
for problem in Config.validate():
    logger.warning("Configuration: %s", problem)

telegram_service = TelegramService()
kana_service = KanaLabsService()
voting_settings = VotingSettings.from_config(Config)


def socketio_emit(event, data):
    socketio.emit(event, data)


executor = KanaLabsExecutor(kana_service)
dispatcher = ActionDispatcher(executor, telegram_service, emit_callback=socketio_emit)
engine = GroupApprovalEngine(
    telegram_service,
    dispatcher,
    settings=voting_settings,
    emit_callback=socketio_emit,
)


def _propose(data: dict):
    """提案の共通処理。(レスポンス辞書, HTTPステータス) を返す"""
    chat_id = data.get("chat_id")
    if chat_id is None:
        return {"ok": False, "error": "chat_id is required"}, 400

    try:
        result = engine.propose(
            kind=data.get("kind"),
            payload=data.get("payload") or {},
            origin_chat=int(chat_id),
            proposed_by=data.get("proposed_by"),
        )
    except (TypeError, ValueError) as e:
        return {"ok": False, "error": str(e)}, 400

    return result.to_dict(), (201 if result.ok else 502)


# ============================================================
# Telegram Webhook
# ============================================================
@app.route("/telegram/webhook", methods=["POST"])
def telegram_webhook():
    """
    Telegram からの更新を受け取る。
    poll_answer のみ処理し、それ以外は無視する（常に200を返す）。
    """
    if Config.TELEGRAM_WEBHOOK_SECRET:
        token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
        if token != Config.TELEGRAM_WEBHOOK_SECRET:
            logger.warning("Webhook secret mismatch from %s", request.remote_addr)
            return jsonify({"ok": False}), 403

    update = request.get_json(silent=True) or {}
    answer = update.get("poll_answer")
    if answer:
        voter = answer.get("user") or {}
        engine.handle_vote(
            external_id=answer.get("poll_id", ""),
            voter_id=voter.get("id", ""),
            option_ids=answer.get("option_ids") or [],
        )
    return jsonify({"ok": True})


# ============================================================
# ルート
# ============================================================
@app.route("/api/status")
def get_status():
    """現在のアプリケーション状態を返す"""
    return jsonify({
        "network": Config.APTOS_NETWORK,
        "pending_actions": len(engine.registry),
        "active_timers": engine.pending_timers(),
        "settings": voting_settings.to_dict(),
    })


@app.route("/api/markets")
def list_markets():
    return jsonify(get_markets())


@app.route("/api/actions", methods=["GET"])
def list_actions():
    """承認待ちアクション一覧"""
    return jsonify(engine.registry.pending())


@app.route("/api/actions", methods=["POST"])
def create_action():
    """
    アクションを提案する
    body: { "chat_id": -100123, "kind": "place_order", "proposed_by": "alice",
            "payload": { "market_id": "14", "side": "long", "size": 1, "order_type": "market" } }
    """
    body, status = _propose(request.get_json(silent=True) or {})
    return jsonify(body), status


@app.route("/api/dispatches")
def list_dispatches():
    """ディスパッチ履歴"""
    limit = request.args.get("limit", 50, type=int)
    return jsonify(dispatcher.get_history(limit))


@app.route("/api/settings", methods=["GET"])
def get_settings():
    return jsonify(voting_settings.to_dict())


@app.route("/api/settings", methods=["PUT"])
def update_settings():
    """投票パラメータを更新する（プロセス終了まで有効）"""
    try:
        voting_settings.update(**(request.get_json(silent=True) or {}))
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    logger.info("Voting settings updated: %s", voting_settings.to_dict())
    return jsonify(voting_settings.to_dict())


# ============================================================
# Socket.IO イベント
# ============================================================
@socketio.on("connect")
def handle_connect():
    emit("state_update", {
        "pending_actions": engine.registry.pending(),
        "settings": voting_settings.to_dict(),
    })


@socketio.on("propose_action")
def handle_propose_action(data):
    """
    アクション提案
    data: { "chat_id": ..., "kind": "...", "payload": {...}, "proposed_by": "..." }
    """
    body, status = _propose(data or {})
    if status != 201:
        emit("error", {"message": body.get("error") or "Proposal failed"})
        return
    emit("proposal_created", body)


# ============================================================
# メイン実行
# ============================================================
if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    if Config.TELEGRAM_WEBHOOK_URL:
        try:
            telegram_service.set_webhook(Config.TELEGRAM_WEBHOOK_URL, Config.TELEGRAM_WEBHOOK_SECRET or None)
        except Exception as e:
            logger.error("Webhook registration failed: %s", e)
    logger.info("""
    ======================================
      Group Vote
      http://localhost:%d
    ======================================
    """, port)
    try:
        socketio.run(app, host="0.0.0.0", port=port, debug=Config.DEBUG)
    finally:
        engine.shutdown()
