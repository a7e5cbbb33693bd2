from __future__ import annotations

import json
import os
import logging

import redis

from .schema import EventEnvelope
from .metrics import get_events_total, get_events_dlq_total


STREAM_EVENTS = os.getenv("EVENTS_STREAM", "fundledger.events")
STREAM_DLQ = os.getenv("EVENTS_DLQ", "fundledger.dlq")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SOCKET_TIMEOUT = float(os.getenv("EVENTS_SOCKET_TIMEOUT", "2.0"))

log = logging.getLogger("fundledger.events")


def _get_redis():
    # publish runs under the campaign lock
    return redis.Redis.from_url(
        os.getenv("REDIS_URL", REDIS_URL),
        decode_responses=True,
        socket_timeout=SOCKET_TIMEOUT,
        socket_connect_timeout=SOCKET_TIMEOUT,
    )


def to_json_line(env: EventEnvelope) -> str:
    return json.dumps({
        "schema_version": env.schema_version,
        "correlation_id": env.correlation_id,
        "sequence": env.sequence,
        "event": env.event.model_dump(),
    }, separators=(",", ":"))


def publish(env: EventEnvelope) -> None:
    """Publish an event to Redis Streams and log a single-line JSON.

    Transport is best-effort: the ledger has already committed the state
    change this event describes, so Redis being unreachable must not surface
    as a ledger failure.
    """
    event_type = env.event.event_type
    get_events_total().labels(event_type).inc()

    line = to_json_line(env)
    try:
        r = _get_redis()
        r.xadd(STREAM_EVENTS, {"json": line})
    except redis.RedisError as e:
        log.warning("event stream unavailable (%s); routing seq=%s to DLQ", e, env.sequence)
        try:
            r = _get_redis()
            r.xadd(STREAM_DLQ, {"json": line})
            get_events_dlq_total().labels(event_type).inc()
        except redis.RedisError:
            log.error("DLQ unavailable; event seq=%s only present in logs", env.sequence)
    # Always log for ingestion
    log.info(line)


def ensure_group(group: str) -> None:
    try:
        r = _get_redis()
        # Create the group if it doesn't exist
        r.xgroup_create(name=STREAM_EVENTS, groupname=group, id="$", mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" in str(e):
            return
        raise


def consume(group: str, consumer: str, block_ms: int = 15000):
    """Generator yielding (id, json_str) from the Redis Stream consumer group.

    Yields None when the block timeout elapses without messages. Caller is
    responsible for acknowledging with XACK.
    """
    r = _get_redis()
    ensure_group(group)
    while True:
        resp = r.xreadgroup(group, consumer, {STREAM_EVENTS: ">"}, count=100, block=block_ms)
        if not resp:
            yield None
            continue
        # resp is list[(stream, [(id, {field:value}), ...])]
        for _stream, entries in resp:
            for msg_id, fields in entries:
                yield (msg_id, fields.get("json", ""))
