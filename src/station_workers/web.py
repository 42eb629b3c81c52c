"""
Web Worker for Station Snapshots

Handles all HTTP requests:
- POST /api/start                    - create a process and enqueue its start message
- GET  /api/process/{process_id}     - status and signed image links for a process
- GET  /assets/{bucket}/{key}        - signed-link downloads (in-memory bucket only)
- GET  /health                       - liveness
"""

import logging
import uuid

from aiohttp import web

from .shared import (
    QueueUnavailable,
    StartMessage,
    StoreError,
    WorkerConfig,
    add_trace_context,
    build_process_view,
    create_process,
    encode_message,
    log_with_trace
)


async def submit_process(env, config, trace_id=None):
    """
    Create a process record and enqueue exactly one start message

    The record is written first. If the enqueue then fails the record is
    left behind without a start message; the store and the queue are not
    transactional together, so there is nothing to roll back to.

    Args:
        env: Worker environment (METADATA bucket, START_QUEUE)
        config: WorkerConfig
        trace_id: Optional trace ID to continue

    Returns:
        str: The new process ID

    Raises:
        QueueUnavailable: If the start message could not be enqueued
    """
    process_id = uuid.uuid4().hex
    message = add_trace_context({'processId': process_id}, trace_id=trace_id)
    trace_context = message['_trace']

    log_with_trace(
        f"Received start request. Creating process {process_id}",
        trace_context=trace_context,
        process_id=process_id,
        worker='web',
        action='submit'
    )

    await create_process(env, process_id)

    try:
        await env.START_QUEUE.send(encode_message(StartMessage.model_validate(message)))
    except Exception as e:
        log_with_trace(
            f"Failed to enqueue start message for process {process_id}. Queue might be unavailable.",
            trace_context=trace_context,
            level=logging.ERROR,
            process_id=process_id,
            error=str(e),
            worker='web',
            action='enqueue_failed'
        )
        raise QueueUnavailable(f"Could not enqueue start message for process {process_id}") from e

    return process_id


def _error(message, status):
    return web.json_response({'error': message}, status=status)


class WebWorker:
    """
    Web Worker for Station Snapshots
    Handles all HTTP requests
    """

    def __init__(self, env):
        self.env = env
        self.config = WorkerConfig(env)

    def routes(self):
        return [
            web.post('/api/start', self.handle_start),
            web.get('/api/process/{process_id}', self.handle_get_process),
            web.get('/assets/{bucket}/{key}', self.handle_asset),
            web.get('/health', self.handle_health),
        ]

    def create_app(self):
        app = web.Application()
        app.add_routes(self.routes())
        return app

    def _base_url(self, request):
        if self.config.PUBLIC_BASE_URL:
            return self.config.PUBLIC_BASE_URL.rstrip('/')
        return str(request.url.origin())

    async def handle_start(self, request):
        """POST /api/start"""
        try:
            process_id = await submit_process(self.env, self.config)
        except QueueUnavailable:
            return _error('Could not enqueue job. Please try again later.', 503)
        except Exception as e:
            log_with_trace(
                f"Unexpected error handling start request: {e}",
                level=logging.ERROR,
                error=str(e),
                worker='web',
                action='error'
            )
            return _error('An unexpected error occurred. Please check logs.', 500)

        return web.json_response(
            {
                'processId': process_id,
                'statusUrl': f"{self._base_url(request)}/api/process/{process_id}",
                'message': 'Started. Use the process id to check status or results.'
            },
            status=202
        )

    async def handle_get_process(self, request):
        """GET /api/process/{process_id}"""
        process_id = request.match_info.get('process_id', '').strip()
        if not process_id:
            return _error('Missing process ID.', 400)

        try:
            view = await build_process_view(self.env, self.config, process_id)
        except StoreError as e:
            log_with_trace(
                f"Storage request failed while retrieving process {process_id}: {e}",
                level=logging.ERROR,
                process_id=process_id,
                error=str(e),
                worker='web',
                action='store_error'
            )
            return _error('Failed to access storage. Try again later.', 503)
        except Exception as e:
            log_with_trace(
                f"Unexpected error while retrieving process {process_id}: {e}",
                level=logging.ERROR,
                process_id=process_id,
                error=str(e),
                worker='web',
                action='error'
            )
            return _error('Unexpected error occurred.', 500)

        if view is None:
            return _error('Process not found.', 404)
        return web.json_response(view)

    async def handle_asset(self, request):
        """GET /assets/{bucket}/{key}?expires=...&signature=..."""
        bucket = self.env.IMAGES
        verify = getattr(bucket, 'verify_signature', None)
        if verify is None or request.match_info['bucket'] != bucket.name:
            return _error('Not found', 404)

        key = request.match_info['key']
        if not verify(key, request.query.get('expires'), request.query.get('signature')):
            return _error('Link expired or invalid.', 403)

        stored = await bucket.get(key)
        if stored is None:
            return _error('Not found', 404)

        return web.Response(
            body=stored.body,
            content_type=stored.content_type or 'application/octet-stream',
            headers={'Cache-Control': 'private, max-age=3600'}
        )

    async def handle_health(self, request):
        return web.json_response({'status': 'ok'})
