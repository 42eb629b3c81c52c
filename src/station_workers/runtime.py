"""
Process runtime for Station Snapshots

Builds the worker environment (settings plus queue and bucket bindings)
from environment variables and runs the web worker and both queue
consumers in one aiohttp application.
"""

import os
from types import SimpleNamespace

import aiohttp
from aiohttp import web
from dotenv import load_dotenv

from .image_processor import ImageProcessor
from .shared import (
    MemoryBucket,
    MemoryQueue,
    QueueConsumer,
    S3Bucket,
    SqsQueue,
    WorkerConfig,
    configure_logging,
    log_with_trace
)
from .start_processor import StartProcessor
from .web import WebWorker


# Plain settings copied from the process environment onto the worker env
SETTINGS = (
    'STORAGE_BACKEND',
    'METADATA_CONTAINER',
    'IMAGES_CONTAINER',
    'START_QUEUE_NAME',
    'IMAGE_QUEUE_NAME',
    'S3_ENDPOINT_URL',
    'AWS_REGION',
    'PHOTO_SOURCE',
    'UNSPLASH_ACCESS_KEY',
    'IMAGE_FEED_URL',
    'WEATHER_FEED_URL',
    'STATION_COUNT',
    'MAX_STATIONS',
    'FETCH_TIMEOUT',
    'MERGE_MAX_ATTEMPTS',
    'MERGE_RETRY_DELAY',
    'MERGE_MAX_DELAY',
    'COMPLETION_POLICY',
    'LINK_TTL_SECONDS',
    'LINK_SIGNING_KEY',
    'PUBLIC_BASE_URL',
    'QUEUE_BATCH_SIZE',
    'QUEUE_MAX_RETRIES',
    'QUEUE_RETRY_DELAY',
    'WORKER_CONCURRENCY',
    'HOST',
    'PORT',
    'LOG_LEVEL',
)

ENV_KEY = web.AppKey('env', SimpleNamespace)


def _env(environ, name):
    value = environ.get(name)
    return value if value not in (None, '', 'null', 'None') else None


def build_env(environ=None):
    """
    Build the worker environment

    Args:
        environ: Mapping of settings. Defaults to os.environ after loading
                 a .env file from the working directory.

    Returns:
        SimpleNamespace: Settings as attributes plus METADATA, IMAGES,
                         START_QUEUE and IMAGE_QUEUE bindings

    Raises:
        ConfigurationError: If a setting is invalid
    """
    if environ is None:
        load_dotenv(override=False)
        environ = os.environ

    env = SimpleNamespace(**{name: _env(environ, name) for name in SETTINGS})
    config = WorkerConfig(env)

    if config.STORAGE_BACKEND == 'aws':
        region = env.AWS_REGION or 'us-east-1'
        env.METADATA = S3Bucket(config.METADATA_CONTAINER, endpoint_url=env.S3_ENDPOINT_URL, region=region)
        env.IMAGES = S3Bucket(config.IMAGES_CONTAINER, endpoint_url=env.S3_ENDPOINT_URL, region=region)
        env.START_QUEUE = SqsQueue(config.START_QUEUE_NAME, region=region, endpoint_url=env.S3_ENDPOINT_URL)
        env.IMAGE_QUEUE = SqsQueue(config.IMAGE_QUEUE_NAME, region=region, endpoint_url=env.S3_ENDPOINT_URL)
        return env

    base_url = config.PUBLIC_BASE_URL or f"http://localhost:{config.PORT}"
    env.METADATA = MemoryBucket(config.METADATA_CONTAINER)
    env.IMAGES = MemoryBucket(
        config.IMAGES_CONTAINER,
        signing_key=env.LINK_SIGNING_KEY,
        public_base_url=base_url
    )
    env.START_QUEUE = MemoryQueue(
        config.START_QUEUE_NAME,
        max_retries=config.QUEUE_MAX_RETRIES,
        retry_delay=config.QUEUE_RETRY_DELAY
    )
    env.IMAGE_QUEUE = MemoryQueue(
        config.IMAGE_QUEUE_NAME,
        max_retries=config.QUEUE_MAX_RETRIES,
        retry_delay=config.QUEUE_RETRY_DELAY
    )
    return env


def build_consumers(env, config, session=None):
    """Queue consumers for the start and image queues"""
    options = {
        'batch_size': config.QUEUE_BATCH_SIZE,
        'concurrency': config.WORKER_CONCURRENCY,
        'retry_delay': config.QUEUE_RETRY_DELAY,
    }
    return [
        QueueConsumer(env.START_QUEUE, StartProcessor(env, session=session), **options),
        QueueConsumer(env.IMAGE_QUEUE, ImageProcessor(env), **options),
    ]


def _consumer_context(env, config):
    async def run_consumers(app):
        timeout = aiohttp.ClientTimeout(total=config.FETCH_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            consumers = build_consumers(env, config, session=session)
            for consumer in consumers:
                await consumer.start()
            log_with_trace(
                f"Consumers running on {config.START_QUEUE_NAME} and {config.IMAGE_QUEUE_NAME}",
                backend=config.STORAGE_BACKEND,
                concurrency=config.WORKER_CONCURRENCY,
                action='consumers_started'
            )

            yield

            for consumer in consumers:
                await consumer.stop()
            log_with_trace('Consumers stopped', action='consumers_stopped')

    return run_consumers


def create_app(env, with_consumers=True):
    """
    The aiohttp application serving the web worker

    Args:
        env: Worker environment from build_env()
        with_consumers: Also run the queue consumers for the app's lifetime

    Returns:
        web.Application
    """
    config = WorkerConfig(env)
    app = WebWorker(env).create_app()
    app[ENV_KEY] = env
    if with_consumers:
        app.cleanup_ctx.append(_consumer_context(env, config))
    return app


def main():
    env = build_env()
    config = WorkerConfig(env)
    configure_logging(config.LOG_LEVEL)

    log_with_trace(
        f"Starting Station Snapshots on {config.HOST}:{config.PORT}",
        backend=config.STORAGE_BACKEND,
        photo_source=config.PHOTO_SOURCE,
        action='startup'
    )
    web.run_app(create_app(env), host=config.HOST, port=config.PORT, print=None)
