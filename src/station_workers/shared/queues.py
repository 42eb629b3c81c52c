"""
Queue bindings and consumer loop for Station Snapshot workers

Handlers receive a batch and settle each message with ack() or retry(),
the same contract as a Cloudflare queue consumer:

    async def queue(self, batch):
        for message in batch.messages:
            ...
            message.ack()

Messages the handler leaves unsettled are acknowledged once it returns.
If the handler raises, every unsettled message in the batch is retried.

Delivery is at-least-once and unordered for both bindings.
"""

import asyncio
import logging
import uuid
from collections import deque

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import QueueUnavailable
from .tracing import log_with_trace


class QueueMessage:
    """One delivery of a queue message"""

    def __init__(self, body, id=None, attempts=1, receipt=None):
        self.id = id or uuid.uuid4().hex
        self.body = body
        self.attempts = attempts
        self.receipt = receipt
        self.outcome = None
        self.retry_delay = None

    def ack(self):
        if self.outcome is None:
            self.outcome = 'ack'

    def retry(self, delay=None):
        if self.outcome is None:
            self.outcome = 'retry'
            self.retry_delay = delay

    @property
    def acked(self):
        return self.outcome == 'ack'

    @property
    def retried(self):
        return self.outcome == 'retry'

    def __repr__(self):
        return f"QueueMessage(id={self.id!r}, attempts={self.attempts}, outcome={self.outcome!r})"


class MessageBatch:
    def __init__(self, queue, messages):
        self.queue = queue
        self.messages = list(messages)

    def ack_all(self):
        for message in self.messages:
            message.ack()

    def retry_all(self, delay=None):
        for message in self.messages:
            message.retry(delay)


class MemoryQueue:
    """
    In-process queue with redelivery and a dead-letter list

    A retried message comes back after retry_delay seconds with its
    attempt count bumped; after max_retries deliveries it is moved to
    dead_letters instead.

    sent and dead_letters keep only the last `history` entries; pass
    history=None to keep everything.
    """

    def __init__(self, name, max_retries=5, retry_delay=1.0, history=100):
        self.name = name
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sent = deque(maxlen=history)
        self.dead_letters = deque(maxlen=history)
        self._queue = asyncio.Queue()
        self._in_flight = 0
        self._scheduled = 0

    async def send(self, body):
        self.sent.append(body)
        self._queue.put_nowait(QueueMessage(body))

    async def receive(self, max_messages=10, wait_seconds=1.0):
        try:
            first = await asyncio.wait_for(self._queue.get(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            return []

        messages = [first]
        while len(messages) < max_messages and not self._queue.empty():
            messages.append(self._queue.get_nowait())
        self._in_flight += len(messages)
        return messages

    async def complete(self, message):
        self._in_flight -= 1

    async def redeliver(self, message, delay=None):
        self._in_flight -= 1
        if message.attempts >= self.max_retries:
            self.dead_letters.append(message)
            log_with_trace(
                f"Message {message.id} dead-lettered after {message.attempts} attempts",
                level=logging.ERROR,
                queue=self.name,
                action='dead_letter'
            )
            return

        again = QueueMessage(message.body, id=message.id, attempts=message.attempts + 1)
        delay = self.retry_delay if delay is None else delay
        if delay <= 0:
            self._queue.put_nowait(again)
            return

        self._scheduled += 1
        asyncio.get_running_loop().call_later(delay, self._release, again)

    def _release(self, message):
        self._scheduled -= 1
        self._queue.put_nowait(message)

    def idle(self):
        """True when nothing is queued, in flight or waiting for redelivery"""
        return self._queue.empty() and self._in_flight == 0 and self._scheduled == 0

    def qsize(self):
        return self._queue.qsize()


class SqsQueue:
    """
    Amazon SQS binding

    Retrying a message shortens its visibility timeout so SQS hands it
    out again; dead-lettering is left to the queue's redrive policy.
    """

    def __init__(self, name, client=None, queue_url=None, region='us-east-1', endpoint_url=None):
        self.name = name
        if client is None:
            client_kwargs = {'service_name': 'sqs', 'region_name': region}
            if endpoint_url:
                client_kwargs['endpoint_url'] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client
        self._queue_url = queue_url

    async def _url(self):
        if self._queue_url is None:
            response = await asyncio.to_thread(self.client.get_queue_url, QueueName=self.name)
            self._queue_url = response['QueueUrl']
        return self._queue_url

    async def send(self, body):
        try:
            url = await self._url()
            await asyncio.to_thread(self.client.send_message, QueueUrl=url, MessageBody=body)
        except (ClientError, BotoCoreError) as e:
            raise QueueUnavailable(f"Could not send to {self.name}: {e}") from e

    async def receive(self, max_messages=10, wait_seconds=1.0):
        url = await self._url()
        response = await asyncio.to_thread(
            self.client.receive_message,
            QueueUrl=url,
            MaxNumberOfMessages=min(max_messages, 10),
            WaitTimeSeconds=int(wait_seconds),
            AttributeNames=['ApproximateReceiveCount']
        )
        return [
            QueueMessage(
                raw['Body'],
                id=raw['MessageId'],
                attempts=int(raw.get('Attributes', {}).get('ApproximateReceiveCount', 1)),
                receipt=raw['ReceiptHandle']
            )
            for raw in response.get('Messages', [])
        ]

    async def complete(self, message):
        url = await self._url()
        await asyncio.to_thread(self.client.delete_message, QueueUrl=url, ReceiptHandle=message.receipt)

    async def redeliver(self, message, delay=None):
        url = await self._url()
        await asyncio.to_thread(
            self.client.change_message_visibility,
            QueueUrl=url,
            ReceiptHandle=message.receipt,
            VisibilityTimeout=int(delay or 0)
        )


class QueueConsumer:
    """
    Feeds batches from one queue binding to one handler

    Runs `concurrency` independent loops, so several batches (and so
    several handlers) are in flight at the same time.
    """

    def __init__(self, queue, handler, batch_size=10, wait_seconds=1.0, concurrency=1, retry_delay=None):
        self.queue = queue
        self.handler = handler
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self.concurrency = concurrency
        self.retry_delay = retry_delay
        self._tasks = []
        self._running = False

    async def start(self):
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop())
            for _ in range(self.concurrency)
        ]

    async def stop(self):
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def _worker_loop(self):
        while self._running:
            try:
                messages = await self.queue.receive(self.batch_size, self.wait_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                log_with_trace(
                    f"ERROR receiving from {self.queue.name}: {e}",
                    level=logging.ERROR,
                    queue=self.queue.name,
                    action='receive_error'
                )
                await asyncio.sleep(self.wait_seconds)
                continue

            if messages:
                await self.process(messages)

    async def process(self, messages):
        """Run the handler over one batch and settle every message"""
        batch = MessageBatch(self.queue.name, messages)
        try:
            await self.handler.queue(batch)
        except Exception as e:
            log_with_trace(
                f"ERROR handler failed on batch from {self.queue.name}: {e}",
                level=logging.ERROR,
                queue=self.queue.name,
                error=str(e),
                action='batch_error'
            )
            batch.retry_all()

        for message in batch.messages:
            try:
                if message.retried:
                    delay = message.retry_delay if message.retry_delay is not None else self.retry_delay
                    await self.queue.redeliver(message, delay)
                else:
                    await self.queue.complete(message)
            except Exception as e:
                log_with_trace(
                    f"ERROR settling message {message.id}: {e}",
                    level=logging.ERROR,
                    queue=self.queue.name,
                    action='settle_error'
                )

    async def run_until_idle(self):
        """
        Process a MemoryQueue until nothing is queued, in flight or
        scheduled for redelivery. Used by local tooling and tests.
        """
        async def drain():
            while not self.queue.idle():
                messages = await self.queue.receive(self.batch_size, wait_seconds=0.01)
                if messages:
                    await self.process(messages)

        await asyncio.gather(*(drain() for _ in range(self.concurrency)))
