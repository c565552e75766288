"""
Tests for ResponseCapture and SettlementTracker
"""

import asyncio

import pytest

from mcpx.x402.capture import ResponseAlreadyReplayed, ResponseCapture
from mcpx.x402.errors import FacilitatorError
from mcpx.x402.models import SettleResponse
from mcpx.x402.settlement import SettlementTracker


def start_message(status=200, headers=None):
    return {
        'type': 'http.response.start',
        'status': status,
        'headers': headers or [(b'content-type', b'application/json')],
    }


def body_message(body=b'{}', more_body=False):
    return {'type': 'http.response.body', 'body': body, 'more_body': more_body}


class Sink:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)


# =============================================================================
# RESPONSE CAPTURE
# =============================================================================

class TestResponseCapture:
    """Two-phase capture and replay"""

    @pytest.mark.asyncio
    async def test_nothing_sent_until_replay(self):
        capture = ResponseCapture()
        sink = Sink()

        await capture.send(start_message())
        await capture.send(body_message(b'{"a":', more_body=True))
        await capture.send(body_message(b'1}'))

        assert sink.messages == []
        assert capture.started
        assert capture.completed
        assert capture.status_code == 200

        await capture.replay(sink)
        assert [m['type'] for m in sink.messages] == [
            'http.response.start', 'http.response.body', 'http.response.body'
        ]
        assert b''.join(m['body'] for m in sink.messages[1:]) == b'{"a":1}'

    @pytest.mark.asyncio
    async def test_injected_header_overwrites(self):
        capture = ResponseCapture()
        sink = Sink()

        await capture.send(start_message(headers=[
            (b'content-type', b'application/json'),
            (b'x-payment-response', b'stale'),
        ]))
        await capture.send(body_message())
        capture.set_header('X-PAYMENT-RESPONSE', 'fresh')

        await capture.replay(sink)
        headers = sink.messages[0]['headers']
        assert (b'x-payment-response', b'fresh') in headers
        assert (b'x-payment-response', b'stale') not in headers
        assert (b'content-type', b'application/json') in headers

    @pytest.mark.asyncio
    async def test_only_one_terminal_body(self):
        capture = ResponseCapture()
        sink = Sink()

        await capture.send(start_message())
        await capture.send(body_message(b'first'))
        await capture.send(body_message(b'second'))
        await capture.replay(sink)

        assert [m.get('body') for m in sink.messages[1:]] == [b'first']

    @pytest.mark.asyncio
    async def test_replay_once(self):
        capture = ResponseCapture()
        await capture.send(start_message())
        await capture.send(body_message())
        await capture.replay(Sink())

        with pytest.raises(ResponseAlreadyReplayed):
            await capture.replay(Sink())
        with pytest.raises(ResponseAlreadyReplayed):
            await capture.send(body_message())

    @pytest.mark.asyncio
    async def test_discard(self):
        capture = ResponseCapture()
        await capture.send(start_message())
        capture.set_header('x-test', '1')
        capture.discard()

        assert not capture.started
        assert capture.injected_headers == {}
        assert capture.status_code is None


# =============================================================================
# SETTLEMENT TRACKER
# =============================================================================

class TestSettlementTracker:
    """Background settlements started after tool execution"""

    @pytest.mark.asyncio
    async def test_success_recorded(self):
        tracker = SettlementTracker()

        async def settle():
            return SettleResponse(success=True, transaction='0xtx', network='base', payer='0xpayer')

        record = tracker.start(settle(), tool_name='premium_echo', network='base')
        assert record.status == 'pending'
        assert tracker.inflight == 1

        await tracker.drain()
        assert record.status == 'settled'
        assert record.transaction == '0xtx'
        assert record.payer == '0xpayer'
        assert record.finished_at is not None
        assert tracker.inflight == 0

    @pytest.mark.asyncio
    async def test_failure_and_error_recorded(self):
        tracker = SettlementTracker()

        async def rejected():
            return SettleResponse(success=False, error_reason='expired')

        async def broken():
            raise FacilitatorError('unreachable')

        tracker.start(rejected(), tool_name='a', network='base')
        tracker.start(broken(), tool_name='b', network='base')
        await tracker.drain()

        failures = {record.tool_name: record for record in tracker.failures()}
        assert failures['a'].status == 'failed'
        assert failures['a'].reason == 'expired'
        assert failures['b'].status == 'error'
        assert failures['b'].reason == 'unreachable'

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        tracker = SettlementTracker(history_size=2)

        async def settle():
            return SettleResponse(success=True)

        for name in ('a', 'b', 'c'):
            tracker.start(settle(), tool_name=name, network='base')
        await tracker.drain()

        assert [record.tool_name for record in tracker.history] == ['b', 'c']

    @pytest.mark.asyncio
    async def test_cancelled_settlement(self):
        tracker = SettlementTracker()
        never = asyncio.Event()

        async def settle():
            await never.wait()

        record = tracker.start(settle(), tool_name='slow', network='base')
        await asyncio.sleep(0)
        record.task.cancel()
        await tracker.drain()

        assert record.status == 'error'
        assert record.reason == 'cancelled'
        assert tracker.inflight == 0
