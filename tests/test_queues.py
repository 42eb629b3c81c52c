"""Tests for queue bindings and the consumer loop."""

import asyncio

import boto3
import pytest
from botocore.stub import Stubber

from station_workers.shared import (
    MemoryQueue,
    QueueConsumer,
    QueueMessage,
    QueueUnavailable,
    SqsQueue
)


class RecordingHandler:
    """Queue handler that settles messages according to a fixed plan."""

    def __init__(self, decision='ack', raise_error=False):
        self.decision = decision
        self.raise_error = raise_error
        self.seen = []

    async def queue(self, batch):
        for message in batch.messages:
            self.seen.append((message.body, message.attempts))
            if self.decision == 'ack':
                message.ack()
            elif self.decision == 'retry':
                message.retry()
        if self.raise_error:
            raise RuntimeError('handler crashed')


# ─────────────────────────────────────────────────────────────
# QueueMessage
# ─────────────────────────────────────────────────────────────


class TestQueueMessage:
    """Test message settlement."""

    def test_first_decision_wins(self):
        message = QueueMessage('body')
        message.ack()
        message.retry()

        assert message.acked
        assert not message.retried

    def test_retry_keeps_delay(self):
        message = QueueMessage('body')
        message.retry(delay=5)

        assert message.retried
        assert message.retry_delay == 5


# ─────────────────────────────────────────────────────────────
# MemoryQueue
# ─────────────────────────────────────────────────────────────


class TestMemoryQueue:
    """Test in-memory delivery and redelivery."""

    @pytest.mark.asyncio
    async def test_receive_in_batches(self):
        queue = MemoryQueue('q')
        for i in range(5):
            await queue.send(f"m{i}")

        first = await queue.receive(max_messages=3, wait_seconds=0.1)
        second = await queue.receive(max_messages=3, wait_seconds=0.1)

        assert [m.body for m in first] == ['m0', 'm1', 'm2']
        assert [m.body for m in second] == ['m3', 'm4']
        assert list(queue.sent) == [f"m{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_sent_history_is_bounded(self):
        queue = MemoryQueue('q', history=2)
        for i in range(5):
            await queue.send(f"m{i}")

        assert list(queue.sent) == ['m3', 'm4']
        assert queue.qsize() == 5

    @pytest.mark.asyncio
    async def test_dead_letter_history_is_bounded(self):
        queue = MemoryQueue('q', max_retries=1, retry_delay=0, history=1)
        for body in ('a', 'b'):
            await queue.send(body)
        for message in await queue.receive(wait_seconds=0.1):
            await queue.redeliver(message)

        assert [m.body for m in queue.dead_letters] == ['b']

    @pytest.mark.asyncio
    async def test_receive_times_out_empty(self):
        assert await MemoryQueue('q').receive(wait_seconds=0.01) == []

    @pytest.mark.asyncio
    async def test_redelivery_bumps_attempts(self):
        queue = MemoryQueue('q', max_retries=3, retry_delay=0)
        await queue.send('m')
        [message] = await queue.receive(wait_seconds=0.1)

        await queue.redeliver(message)
        [again] = await queue.receive(wait_seconds=0.1)

        assert again.id == message.id
        assert again.attempts == 2

    @pytest.mark.asyncio
    async def test_delayed_redelivery(self):
        queue = MemoryQueue('q', retry_delay=0.05)
        await queue.send('m')
        [message] = await queue.receive(wait_seconds=0.1)

        await queue.redeliver(message)
        assert not queue.idle()
        assert await queue.receive(wait_seconds=0.001) == []

        [again] = await queue.receive(wait_seconds=1.0)
        assert again.attempts == 2

    @pytest.mark.asyncio
    async def test_dead_letter_after_max_retries(self):
        queue = MemoryQueue('q', max_retries=2, retry_delay=0)
        await queue.send('m')

        [message] = await queue.receive(wait_seconds=0.1)
        await queue.redeliver(message)
        [message] = await queue.receive(wait_seconds=0.1)
        await queue.redeliver(message)

        assert [m.body for m in queue.dead_letters] == ['m']
        assert queue.idle()


# ─────────────────────────────────────────────────────────────
# QueueConsumer
# ─────────────────────────────────────────────────────────────


class TestQueueConsumer:
    """Test batch settlement by the consumer loop."""

    @pytest.mark.asyncio
    async def test_acked_messages_complete(self):
        queue = MemoryQueue('q', retry_delay=0)
        handler = RecordingHandler('ack')
        await queue.send('a')
        await queue.send('b')

        await QueueConsumer(queue, handler).run_until_idle()

        assert handler.seen == [('a', 1), ('b', 1)]
        assert queue.idle()
        assert not queue.dead_letters

    @pytest.mark.asyncio
    async def test_unsettled_messages_are_acked(self):
        queue = MemoryQueue('q', retry_delay=0)
        handler = RecordingHandler(decision=None)
        await queue.send('a')

        await QueueConsumer(queue, handler).run_until_idle()

        assert handler.seen == [('a', 1)]

    @pytest.mark.asyncio
    async def test_retried_until_dead_letter(self):
        queue = MemoryQueue('q', max_retries=3, retry_delay=0)
        handler = RecordingHandler('retry')
        await queue.send('a')

        await QueueConsumer(queue, handler).run_until_idle()

        assert handler.seen == [('a', 1), ('a', 2), ('a', 3)]
        assert len(queue.dead_letters) == 1

    @pytest.mark.asyncio
    async def test_handler_crash_retries_unsettled(self):
        queue = MemoryQueue('q', max_retries=2, retry_delay=0)
        handler = RecordingHandler(decision=None, raise_error=True)
        await queue.send('a')

        await QueueConsumer(queue, handler).run_until_idle()

        assert handler.seen == [('a', 1), ('a', 2)]
        assert len(queue.dead_letters) == 1

    @pytest.mark.asyncio
    async def test_handler_crash_keeps_acks(self):
        queue = MemoryQueue('q', max_retries=2, retry_delay=0)
        handler = RecordingHandler('ack', raise_error=True)
        await queue.send('a')

        await QueueConsumer(queue, handler).run_until_idle()

        assert handler.seen == [('a', 1)]
        assert not queue.dead_letters

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        queue = MemoryQueue('q')
        handler = RecordingHandler('ack')
        consumer = QueueConsumer(queue, handler, wait_seconds=0.01, concurrency=2)

        await consumer.start()
        await queue.send('a')
        for _ in range(100):
            if handler.seen:
                break
            await asyncio.sleep(0.01)
        await consumer.stop()

        assert handler.seen == [('a', 1)]


# ─────────────────────────────────────────────────────────────
# SqsQueue
# ─────────────────────────────────────────────────────────────


QUEUE_URL = 'https://sqs.us-east-1.amazonaws.com/123456789012/image-queue'


@pytest.fixture
def sqs_client():
    return boto3.client(
        'sqs',
        region_name='us-east-1',
        aws_access_key_id='testing',
        aws_secret_access_key='testing'
    )


class TestSqsQueue:
    """Test SQS request shapes."""

    @pytest.mark.asyncio
    async def test_send(self, sqs_client):
        queue = SqsQueue('image-queue', client=sqs_client, queue_url=QUEUE_URL)
        with Stubber(sqs_client) as stubber:
            stubber.add_response(
                'send_message',
                {'MessageId': 'm1'},
                {'QueueUrl': QUEUE_URL, 'MessageBody': 'payload'}
            )
            await queue.send('payload')
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_send_failure(self, sqs_client):
        queue = SqsQueue('image-queue', client=sqs_client, queue_url=QUEUE_URL)
        with Stubber(sqs_client) as stubber:
            stubber.add_client_error('send_message', service_error_code='ServiceUnavailable', http_status_code=503)
            with pytest.raises(QueueUnavailable):
                await queue.send('payload')

    @pytest.mark.asyncio
    async def test_resolves_queue_url_once(self, sqs_client):
        queue = SqsQueue('image-queue', client=sqs_client)
        with Stubber(sqs_client) as stubber:
            stubber.add_response('get_queue_url', {'QueueUrl': QUEUE_URL}, {'QueueName': 'image-queue'})
            stubber.add_response('send_message', {'MessageId': 'm1'})
            stubber.add_response('send_message', {'MessageId': 'm2'})
            await queue.send('one')
            await queue.send('two')
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_receive(self, sqs_client):
        queue = SqsQueue('image-queue', client=sqs_client, queue_url=QUEUE_URL)
        with Stubber(sqs_client) as stubber:
            stubber.add_response(
                'receive_message',
                {'Messages': [{
                    'MessageId': 'm1',
                    'ReceiptHandle': 'r1',
                    'Body': 'payload',
                    'Attributes': {'ApproximateReceiveCount': '2'},
                }]},
                {
                    'QueueUrl': QUEUE_URL,
                    'MaxNumberOfMessages': 10,
                    'WaitTimeSeconds': 1,
                    'AttributeNames': ['ApproximateReceiveCount'],
                }
            )
            [message] = await queue.receive(max_messages=25, wait_seconds=1.0)

        assert message.body == 'payload'
        assert message.attempts == 2
        assert message.receipt == 'r1'

    @pytest.mark.asyncio
    async def test_settlement(self, sqs_client):
        queue = SqsQueue('image-queue', client=sqs_client, queue_url=QUEUE_URL)
        message = QueueMessage('payload', id='m1', receipt='r1')
        with Stubber(sqs_client) as stubber:
            stubber.add_response('delete_message', {}, {'QueueUrl': QUEUE_URL, 'ReceiptHandle': 'r1'})
            stubber.add_response(
                'change_message_visibility',
                {},
                {'QueueUrl': QUEUE_URL, 'ReceiptHandle': 'r1', 'VisibilityTimeout': 30}
            )
            await queue.complete(message)
            await queue.redeliver(message, delay=30)
            stubber.assert_no_pending_responses()
