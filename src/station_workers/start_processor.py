"""
Start Processor Worker

Queue consumer that creates the fan-out for each submitted process:
1. Consumes start messages
2. Resolves the stations to render (weather feed, capped)
3. Fixes the process's expected job count in its record
4. Enqueues one station job per station
"""

import logging

from .shared import (
    FetchError,
    MalformedMessage,
    Station,
    StartMessage,
    StationJobMessage,
    WorkerConfig,
    add_trace_context,
    child_span,
    decode_message,
    encode_message,
    extract_trace_context,
    log_with_trace,
    record_dispatch,
    resolve_stations
)


def build_station_jobs(process_id, stations, expected_count, trace_context=None):
    """
    Job messages for stations 1..expected_count

    Payloads depend only on the process and the station index, so a
    redelivered start message produces the same jobs again.

    Args:
        process_id: Process being fanned out
        stations: Stations resolved for this run (may be fewer than
                  expected_count on redelivery if the feed shrank)
        expected_count: Authoritative job count from the record
        trace_context: Incoming trace context

    Returns:
        list[StationJobMessage]
    """
    by_number = {station.number: station for station in stations}
    trace_id, parent_span_id = child_span(trace_context)

    jobs = []
    for number in range(1, expected_count + 1):
        station = by_number.get(number) or Station(number=number)
        job = {
            'processId': process_id,
            'stationNumber': number,
            'expectedCount': expected_count,
            'stationId': station.station_id,
            'stationName': station.name,
            'temperature': station.temperature,
        }
        job = add_trace_context(job, trace_id=trace_id, parent_span_id=parent_span_id)
        jobs.append(StationJobMessage.model_validate(job))
    return jobs


class StartProcessor:
    """
    Start Processor Worker
    Fans out start messages into individual station jobs
    """

    def __init__(self, env, session=None):
        self.env = env
        self.config = WorkerConfig(env)
        self.session = session

    async def queue(self, batch):
        """
        Queue consumer handler - processes start messages

        Args:
            batch: Batch of messages from the start queue
        """
        log_with_trace(
            f"Start Processor received {len(batch.messages)} message(s)",
            worker='start_processor',
            action='receive'
        )

        total_jobs = 0

        for message in batch.messages:
            try:
                start = decode_message(message.body, StartMessage)
            except MalformedMessage as e:
                log_with_trace(
                    f"Invalid start message {message.id}: {e}",
                    level=logging.ERROR,
                    worker='start_processor',
                    action='malformed'
                )
                message.ack()
                continue

            trace_context = extract_trace_context(start)

            try:
                jobs = await self.dispatch(start, trace_context)
                total_jobs += len(jobs)
                message.ack()

            except FetchError as e:
                log_with_trace(
                    f"Weather feed unavailable, process {start.process_id} stays queued: {e}",
                    trace_context=trace_context,
                    level=logging.ERROR,
                    process_id=start.process_id,
                    error=str(e),
                    worker='start_processor',
                    action='feed_unavailable'
                )
                message.retry()

            except Exception as e:
                log_with_trace(
                    f"ERROR dispatching jobs for process {start.process_id}: {e}",
                    trace_context=trace_context,
                    level=logging.ERROR,
                    process_id=start.process_id,
                    error=str(e),
                    worker='start_processor',
                    action='error'
                )
                message.retry()

        log_with_trace(
            f"Start Processor completed: {total_jobs} jobs enqueued",
            worker='start_processor',
            action='batch_complete'
        )

    async def dispatch(self, start, trace_context=None):
        """
        Fan out one process

        Returns:
            list[StationJobMessage]: The jobs sent to the image queue
        """
        env = self.env

        stations = await resolve_stations(self.config, self.session)
        record = await record_dispatch(
            env, self.config, start.process_id, len(stations), trace_context=trace_context
        )

        jobs = build_station_jobs(start.process_id, stations, record.expected_count, trace_context)

        log_with_trace(
            f"Dispatching {len(jobs)} jobs for process {start.process_id}",
            trace_context=trace_context,
            process_id=start.process_id,
            expected_count=record.expected_count,
            worker='start_processor',
            action='dispatch_jobs'
        )

        for job in jobs:
            await env.IMAGE_QUEUE.send(encode_message(job))

        return jobs
