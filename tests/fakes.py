import itertools

from core.dispatcher import ExecutionResult
from core.errors import ExecutionError


class FakeTransport:
    """TelegramService の代わりに呼び出しを記録する"""

    def __init__(self, chat_type="supergroup", member_count=10):
        self.chat_type = chat_type
        self.member_count = member_count
        self.fail_create = False
        self.fail_send = False
        self.fail_oracle = False
        self.polls = []
        self.messages = []
        self.edits = []
        self.stopped = []
        self._ids = itertools.count(1)

    def get_chat_type(self, chat_id):
        if self.fail_oracle:
            raise RuntimeError("getChat failed")
        return self.chat_type

    def get_member_count(self, chat_id):
        if self.fail_oracle:
            raise RuntimeError("getChatMemberCount failed")
        return self.member_count

    def create_poll(self, chat_id, question, options):
        if self.fail_create:
            raise RuntimeError("sendPoll failed")
        n = next(self._ids)
        self.polls.append((chat_id, question, list(options)))
        return {"poll_id": f"poll-{n}", "message_id": n}

    def send_message(self, chat_id, text):
        if self.fail_send:
            raise RuntimeError("sendMessage failed")
        self.messages.append((chat_id, text))
        return next(self._ids)

    def edit_message(self, chat_id, message_id, text):
        self.edits.append((chat_id, message_id, text))

    def stop_poll(self, chat_id, message_id):
        self.stopped.append((chat_id, message_id))


class FakeExecutor:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def execute(self, action):
        self.calls.append(action)
        if self.error:
            raise ExecutionError(self.error)
        return ExecutionResult(reference="0xabc", submitted=True)


class FakeTimer:
    def __init__(self, seconds, func, args):
        self.seconds = seconds
        self.func = func
        self.args = args
        self.killed = False

    def kill(self, block=True):
        self.killed = True

    def fire(self):
        self.func(*self.args)


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, seconds, func, *args):
        timer = FakeTimer(seconds, func, args)
        self.timers.append(timer)
        return timer
