"""
Image Processor Worker

Queue consumer worker that:
1. Receives station job messages
2. Downloads a photo and draws the station label onto it
3. Uploads the result under a deterministic key
4. Merges the outcome (image or error) into the shared process record

A failed download or render is not retried here: it is recorded in the
process's errors so the process still ends in an explainable state.
Only a failed merge sends the message back to the queue.
"""

import asyncio
import logging

from .shared import (
    MalformedMessage,
    Station,
    StationJobMessage,
    WorkerConfig,
    build_photo_source,
    decode_message,
    extract_trace_context,
    log_with_trace,
    merge_outcome,
    render_station_image,
    upload_image
)


class ImageProcessor:
    """
    Image Processor Worker
    Consumes station jobs and reports each one into its process record
    """

    def __init__(self, env, photo_source=None):
        self.env = env
        self.config = WorkerConfig(env)
        # Raises ConfigurationError (e.g. no Unsplash key) before any message is taken
        self.photo_source = photo_source or build_photo_source(self.config)

    async def queue(self, batch):
        """
        Queue consumer handler - processes batches of station jobs

        Args:
            batch: Batch of messages from the image queue
        """
        env = self.env

        log_with_trace(
            f"Image Processor received {len(batch.messages)} job(s)",
            worker='image_processor',
            action='receive'
        )

        success_count = 0
        error_count = 0

        for message in batch.messages:
            try:
                job = decode_message(message.body, StationJobMessage)
            except MalformedMessage as e:
                log_with_trace(
                    f"Invalid station job {message.id}: {e}",
                    level=logging.ERROR,
                    worker='image_processor',
                    action='malformed'
                )
                message.ack()
                continue

            trace_context = extract_trace_context(job)
            image_key, error = await self.render_station(job, trace_context)

            try:
                record = await merge_outcome(
                    env,
                    self.config,
                    job.process_id,
                    job.expected_count,
                    image=image_key,
                    error=error,
                    trace_context=trace_context
                )
            except Exception as e:
                log_with_trace(
                    f"ERROR merging station {job.station_number} into process {job.process_id}: {e}",
                    trace_context=trace_context,
                    level=logging.ERROR,
                    process_id=job.process_id,
                    station_number=job.station_number,
                    error=str(e),
                    worker='image_processor',
                    action='merge_error'
                )
                message.retry()
                continue

            log_with_trace(
                f"Completed: {job.process_id}/station {job.station_number} -> {record.status.value}",
                trace_context=trace_context,
                process_id=job.process_id,
                station_number=job.station_number,
                status=record.status.value,
                worker='image_processor',
                action='job_complete'
            )
            message.ack()
            if error is None:
                success_count += 1
            else:
                error_count += 1

        log_with_trace(
            f"Batch completed: {success_count} success, {error_count} errors",
            worker='image_processor',
            action='batch_complete'
        )

    async def render_station(self, job, trace_context=None):
        """
        Do the external work for one job

        Returns:
            tuple: (image_key, None) on success, (None, error_text) on failure
        """
        station = Station(
            number=job.station_number,
            station_id=job.station_id,
            name=job.station_name,
            temperature=job.temperature
        )

        try:
            photo = await self.photo_source.fetch(station)
            image_bytes = await asyncio.to_thread(render_station_image, photo, station)
            key = await upload_image(
                self.env,
                image_bytes,
                job.process_id,
                job.station_number,
                station_name=station.name,
                trace_context=trace_context
            )
            return key, None

        except Exception as e:
            reason = str(e) or type(e).__name__
            log_with_trace(
                f"Failed to process image for station {job.station_number}, process {job.process_id}: {reason}",
                trace_context=trace_context,
                level=logging.WARNING,
                process_id=job.process_id,
                station_number=job.station_number,
                error=reason,
                worker='image_processor',
                action='station_failed'
            )
            return None, f"Station {job.station_number}: {reason}"
