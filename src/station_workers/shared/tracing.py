"""
Trace propagation and structured logging

A trace starts at the web worker when a process is submitted and rides
along in every queue message under "_trace", so log lines from the web
worker, the start processor and every image job of one process share a
trace_id. Each worker writes one JSON document per event.
"""

import json
import logging
import sys
import uuid


LOGGER_NAME = 'station_workers'

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(level='INFO'):
    """
    Route worker logs to stdout as bare JSON lines

    Args:
        level: Level name such as 'INFO' or 'DEBUG'

    Returns:
        logging.Logger
    """
    logger.setLevel(str(level).upper())
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(handler)
    return logger


def generate_trace_id():
    return uuid.uuid4().hex


def add_trace_context(message_dict, trace_id=None, parent_span_id=None):
    """
    Stamp a queue payload with a new span

    Args:
        message_dict: Payload about to be sent; modified in place
        trace_id: Trace to continue, or None to start a new one
        parent_span_id: Span of the sender, if any

    Returns:
        dict: message_dict, now carrying "_trace"
    """
    message_dict['_trace'] = {
        'trace_id': trace_id or generate_trace_id(),
        'span_id': uuid.uuid4().hex[:16],
        'parent_span_id': parent_span_id
    }
    return message_dict


def extract_trace_context(body):
    """Trace dict from a decoded payload or message model, or None."""
    if body is None:
        return None
    if isinstance(body, dict):
        return body.get('_trace')

    trace = getattr(body, 'trace', None)
    return trace.model_dump() if trace is not None else None


def log_with_trace(message, trace_context=None, level=logging.INFO, **extra_fields):
    """
    Emit one structured log line

    Args:
        message: Human-readable text
        trace_context: Dict from extract_trace_context(), if known
        level: logging level
        **extra_fields: Merged into the JSON document (worker, action,
                        process_id, ...)
    """
    entry = {'message': message, **extra_fields}

    if trace_context:
        for field in ('trace_id', 'span_id', 'parent_span_id'):
            entry[field] = trace_context.get(field)

    logger.log(level, json.dumps(entry, default=str))


def get_trace_id(trace_context):
    return trace_context.get('trace_id') if trace_context else None


def child_span(trace_context):
    """(trace_id, parent_span_id) to hand to add_trace_context() downstream"""
    if not trace_context:
        return None, None
    return trace_context.get('trace_id'), trace_context.get('span_id')
