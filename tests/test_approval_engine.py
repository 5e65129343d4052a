import gevent
import pytest

from config import VotingSettings
from core.approval_engine import GroupApprovalEngine
from core.dispatcher import ActionDispatcher
from fakes import FakeExecutor, FakeTimerFactory, FakeTransport
from models.action import ActionKind, DepositPayload
from models.poll import PollStatus

APPROVE = [0]
REJECT = [1]


def propose(engine, payload, chat_id=-100):
    result = engine.propose(ActionKind.PLACE_ORDER, payload, origin_chat=chat_id, proposed_by="alice")
    assert result.ok
    return result


def test_proposal_creates_poll_and_registers_action(engine, transport, timers, order_payload):
    result = propose(engine, order_payload)

    assert result.snapshot.required_votes == 3
    assert result.snapshot.progress_message_id is not None
    assert len(transport.polls) == 1
    assert transport.polls[0][2] == ["✅ 承認", "❌ 否決"]
    assert engine.registry.get(result.action_id).kind is ActionKind.PLACE_ORDER
    assert timers.timers[0].seconds == 300


def test_scenario_a_group_of_ten_approves_and_executes_once(engine, executor, timers, order_payload):
    result = propose(engine, order_payload)
    poll_id = result.snapshot.external_id

    engine.handle_vote(poll_id, 1, APPROVE)
    engine.handle_vote(poll_id, 2, APPROVE)
    final = engine.handle_vote(poll_id, 3, REJECT)

    assert final.resolved.status is PollStatus.APPROVED
    assert len(executor.calls) == 1
    assert timers.timers[0].killed
    assert len(engine.registry) == 0


def test_scenario_b_group_of_three_rejects_without_execution(engine, transport, executor, order_payload):
    transport.member_count = 3
    result = propose(engine, order_payload)
    poll_id = result.snapshot.external_id
    assert result.snapshot.required_votes == 2

    engine.handle_vote(poll_id, 1, REJECT)
    final = engine.handle_vote(poll_id, 2, REJECT)

    assert final.resolved.status is PollStatus.REJECTED
    assert executor.calls == []
    assert transport.stopped == [(-100, result.snapshot.message_id)]


def test_scenario_c_private_chat_single_vote_executes(engine, transport, executor, order_payload):
    transport.chat_type = "private"
    result = propose(engine, order_payload, chat_id=42)
    assert result.snapshot.required_votes == 1

    final = engine.handle_vote(result.snapshot.external_id, 42, APPROVE)

    assert final.resolved.status is PollStatus.APPROVED
    assert len(executor.calls) == 1


def test_scenario_d_single_approve_before_deadline_is_approved(engine, executor, timers, order_payload):
    result = propose(engine, order_payload)
    engine.handle_vote(result.snapshot.external_id, 1, APPROVE)

    timers.timers[0].fire()

    assert len(executor.calls) == 1
    assert engine.dispatcher.history[0].status == "approved"
    assert len(engine.registry) == 0


def test_scenario_d_single_reject_before_deadline_expires(engine, executor, timers, order_payload):
    result = propose(engine, order_payload)
    engine.handle_vote(result.snapshot.external_id, 1, REJECT)

    timers.timers[0].fire()

    assert executor.calls == []
    assert engine.dispatcher.history[0].status == "expired"


def test_deadline_without_votes_expires(engine, executor, timers, order_payload):
    propose(engine, order_payload)

    timers.timers[0].fire()

    assert executor.calls == []
    assert engine.dispatcher.history[0].status == "expired"
    assert engine.pending_timers() == 0


def test_stale_timer_after_vote_resolution_does_nothing(engine, executor, timers, order_payload):
    result = propose(engine, order_payload)
    poll_id = result.snapshot.external_id
    for voter in (1, 2, 3):
        engine.handle_vote(poll_id, voter, APPROVE)

    timers.timers[0].fire()

    assert len(executor.calls) == 1
    assert len(engine.dispatcher.history) == 1


def test_same_voter_switching_counts_once(engine, transport, order_payload):
    result = propose(engine, order_payload)
    poll_id = result.snapshot.external_id

    engine.handle_vote(poll_id, 1, APPROVE)
    vote = engine.handle_vote(poll_id, 1, REJECT)

    assert vote.snapshot.total == 1
    assert vote.snapshot.reject == 1
    assert vote.resolved is None
    assert "反対 1" in transport.edits[-1][2]


def test_retraction_updates_progress(engine, order_payload):
    result = propose(engine, order_payload)
    poll_id = result.snapshot.external_id
    engine.handle_vote(poll_id, 1, APPROVE)

    vote = engine.handle_vote(poll_id, 1, [])

    assert vote.changed
    assert vote.snapshot.total == 0


def test_unknown_poll_vote_is_ignored(engine, transport, executor):
    result = engine.handle_vote("no-such-poll", 1, APPROVE)

    assert not result.found
    assert executor.calls == []
    assert transport.messages == []


def test_unknown_option_is_ignored(engine, order_payload):
    result = propose(engine, order_payload)

    vote = engine.handle_vote(result.snapshot.external_id, 1, [7])

    assert vote.found
    assert not vote.changed
    assert vote.resolved is None
    assert vote.snapshot.total == 0
    assert engine.registry.snapshot(result.action_id).total == 0


def test_unknown_option_on_unknown_poll_is_not_found(engine):
    assert not engine.handle_vote("no-such-poll", 1, [7]).found


def test_resolution_before_timer_is_stored_cancels_timer(transport, dispatcher, order_payload):
    engine = None
    created = []

    def resolving_timer_factory(seconds, func, *args):
        # タイマー生成中に別スレッドの投票で解決された状況
        engine.registry.take(args[0])
        timer = FakeTimerFactory()(seconds, func, *args)
        created.append(timer)
        return timer

    engine = GroupApprovalEngine(transport, dispatcher, settings=VotingSettings(),
                                 timer_factory=resolving_timer_factory)
    propose(engine, order_payload)

    assert created[0].killed
    assert engine.pending_timers() == 0


def test_poll_creation_failure_registers_nothing(engine, transport, timers, order_payload):
    transport.fail_create = True

    result = engine.propose(ActionKind.PLACE_ORDER, order_payload, origin_chat=-100)

    assert not result.ok
    assert "Failed to create poll" in result.error
    assert len(engine.registry) == 0
    assert timers.timers == []


def test_oracle_failure_degrades_quorum_and_warns(engine, transport, order_payload):
    transport.fail_oracle = True

    result = engine.propose(ActionKind.PLACE_ORDER, order_payload, origin_chat=-100)

    assert result.ok
    assert result.degraded_quorum
    assert result.snapshot.required_votes == 1
    assert any("縮退" in text for _, text in transport.messages)


def test_invalid_payload_raises_value_error(engine):
    with pytest.raises(ValueError):
        engine.propose("place_order", {"market_id": "14", "side": "up", "size": 1}, origin_chat=-100)
    with pytest.raises(ValueError):
        engine.propose("teleport", {}, origin_chat=-100)


def test_typed_payload_is_accepted(engine, transport):
    transport.chat_type = "private"
    result = engine.propose(ActionKind.DEPOSIT, DepositPayload(market_id="14", amount=5), origin_chat=7)

    assert engine.registry.get(result.action_id).payload.amount == 5


def test_send_failures_do_not_break_voting(engine, transport, executor, order_payload):
    transport.chat_type = "private"
    result = propose(engine, order_payload, chat_id=7)
    transport.fail_send = True

    final = engine.handle_vote(result.snapshot.external_id, 7, APPROVE)

    assert final.resolved.status is PollStatus.APPROVED
    assert len(executor.calls) == 1


def test_zero_window_disables_timer(engine, timers, order_payload):
    engine.settings.update(voting_window_seconds=0)

    result = propose(engine, order_payload)

    assert timers.timers == []
    assert engine.registry.get(result.action_id) is not None


def test_shutdown_kills_timers(engine, timers, order_payload):
    propose(engine, order_payload)
    propose(engine, order_payload)

    engine.shutdown()

    assert all(t.killed for t in timers.timers)
    assert engine.pending_timers() == 0


def test_gevent_timer_expires_poll(order_payload):
    transport, executor = FakeTransport(), FakeExecutor()
    engine = GroupApprovalEngine(
        transport,
        ActionDispatcher(executor, transport),
        settings=VotingSettings(voting_window_seconds=0.05),
    )
    result = propose(engine, order_payload)

    gevent.sleep(0.2)

    assert engine.registry.get(result.action_id) is None
    assert engine.dispatcher.history[0].status == "expired"
    assert executor.calls == []
