"""
Snapshot assembly and compaction.

All partitions of a topic are drained in parallel, one thread and one
Consumer per partition. Results are joined only after every drain has
finished; if any drain fails the whole snapshot fails and nothing partial
is returned.
"""

import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Dict, List, Tuple, Union

from .decoding import decode_string_key
from .drain import drain_partition
from .errors import CancelledError
from .watermarks import load_topic_watermark

Snapshot = Union[List[Tuple], Dict]


def assemble_snapshot(topic_watermark, consumer_factory, key_decoder=decode_string_key, key_filter=None,
                      cancel_event=None, poll_timeout=1.0, console=None) -> List[Tuple]:
    """
    Drain every partition of a TopicWatermark concurrently.

    Returns the concatenated (key, value) pairs in partition order, each
    partition's pairs in log order.

    Raises the first drain failure observed, or CancelledError when
    cancel_event was set. Remaining drains are stopped and awaited first.
    """
    if topic_watermark.is_empty:
        return []

    watermarks = list(topic_watermark)
    stop_event = threading.Event()
    errors = []

    with ThreadPoolExecutor(max_workers=len(watermarks),
                            thread_name_prefix=f"drain-{topic_watermark.topic}") as executor:
        futures = [
            executor.submit(
                drain_partition,
                watermark,
                consumer_factory,
                key_decoder,
                key_filter,
                stop_event,
                poll_timeout,
                console,
            )
            for watermark in watermarks
        ]

        pending = set(futures)
        while pending:
            done, pending = wait(pending, timeout=poll_timeout, return_when=FIRST_EXCEPTION)

            for future in futures:
                if future in done and future.exception() is not None:
                    errors.append(future.exception())
                    stop_event.set()

            if cancel_event is not None and cancel_event.is_set():
                stop_event.set()

    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError(f"Snapshot cancelled for {topic_watermark.topic}", topic=topic_watermark.topic)

    if errors:
        # Drains stopped because a sibling failed report CancelledError; surface the cause
        failures = [e for e in errors if not isinstance(e, CancelledError)]
        raise (failures or errors)[0]

    items = []
    for future in futures:
        items.extend(future.result())
    return items


def compact_snapshot(items, with_compacting) -> Snapshot:
    """
    Reduce pairs to the latest value per key.

    With compacting the result maps each key to the value of its last
    occurrence; pairs with a None key are dropped. Without compacting the
    pairs are returned unchanged as a list.
    """
    if not with_compacting:
        return list(items)

    compacted = {}
    for key, value in items:
        if key is None:
            continue
        compacted[key] = value
    return compacted


class SnapshotLoader:
    """Loads the snapshot of a topic: watermarks, parallel drain, compaction."""

    def __init__(self, consumer_factory, key_decoder=decode_string_key, metadata_timeout=5.0,
                 poll_timeout=1.0, console=None):
        self.consumer_factory = consumer_factory
        self.key_decoder = key_decoder
        self.metadata_timeout = metadata_timeout
        self.poll_timeout = poll_timeout
        self.console = console
        self.last_watermark = None

    def load_compact_snapshot(self, topic, with_compacting, key_filter=None, start_date=None,
                              cancel_event=None) -> Snapshot:
        console = self.console

        topic_watermark = load_topic_watermark(
            topic,
            self.consumer_factory,
            self.metadata_timeout,
            start_date=start_date,
            cancel_event=cancel_event,
            console=console,
        )
        self.last_watermark = topic_watermark

        if topic_watermark.is_empty:
            if console:
                console.log(f"[blue][INFO][/blue] {topic}: No readable messages, snapshot is empty")
            return {} if with_compacting else []

        start = time.perf_counter()
        items = assemble_snapshot(
            topic_watermark,
            self.consumer_factory,
            self.key_decoder,
            key_filter,
            cancel_event,
            self.poll_timeout,
            console,
        )
        if console:
            elapsed = time.perf_counter() - start
            throughput = topic_watermark.expected_messages / elapsed if elapsed > 0 else 0
            console.log(
                f"[blue][INFO][/blue] {topic}: Drained {len(topic_watermark)} partitions "
                f"({elapsed:.1f}s) - {throughput:.0f} msg/s"
            )

        snapshot = compact_snapshot(items, with_compacting)
        if console and with_compacting:
            console.log(f"[blue][INFO][/blue] {topic}: Compacted {len(items):,} messages to {len(snapshot):,} keys")
        return snapshot
