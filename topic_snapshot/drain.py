"""
Partition drain.

Reads one partition from its watermark's low offset until the message just
below the captured high watermark has been read. The boundary message is
kept. The watermark is fixed before the drain starts, so the loop always
terminates on a non-empty partition even while producers keep writing.
"""

from typing import List, Tuple

from confluent_kafka import KafkaError, KafkaException

from .decoding import decode_string_key
from .errors import CancelledError, ReadError


def pull_message(consumer, watermark, cancel_event, poll_timeout):
    """
    Block until the next message of the partition is available.

    Returns the message, or None when the partition end was reached at or
    past the high watermark (trailing offsets were control records that are
    never delivered).
    """
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError(
                f"Drain cancelled for {watermark.topic}[{watermark.partition}]",
                topic=watermark.topic, partition=watermark.partition,
            )

        try:
            msg = consumer.poll(timeout=poll_timeout)
        except KafkaException as e:
            raise ReadError(
                f"Poll failed for {watermark.topic}[{watermark.partition}]: {e}",
                topic=watermark.topic, partition=watermark.partition,
            ) from e

        if msg is None:
            continue

        if msg.error():
            if msg.error().code() == KafkaError._PARTITION_EOF:
                if msg.offset() is not None and msg.offset() >= watermark.high:
                    return None
                continue
            raise ReadError(
                f"Read failed for {watermark.topic}[{watermark.partition}]: {msg.error()}",
                topic=watermark.topic, partition=watermark.partition,
            )

        return msg


def drain_partition(watermark, consumer_factory, key_decoder=decode_string_key, key_filter=None,
                    cancel_event=None, poll_timeout=1.0, console=None) -> List[Tuple]:
    """
    Read every message of one partition's watermark window.

    Args:
        watermark: PartitionWatermark to drain
        consumer_factory: Callable returning a new Consumer owned by this drain
        key_decoder: Converts raw key bytes into the snapshot key
        key_filter: Optional predicate on the decoded key; rejected messages
            are skipped but still count towards the watermark
        cancel_event: threading.Event; once set the drain raises CancelledError
        poll_timeout: Seconds per poll, bounds how late cancellation is noticed
        console: Rich console for logging

    Returns: list of (key, value) pairs in partition order
    """
    records = []
    consumer = consumer_factory()

    try:
        consumer.assign([watermark.topic_partition()])

        while True:
            msg = pull_message(consumer, watermark, cancel_event, poll_timeout)
            if msg is None:
                break

            try:
                key = key_decoder(msg.key())
            except (UnicodeDecodeError, ValueError) as e:
                raise ReadError(
                    f"Cannot decode key at {watermark.topic}[{watermark.partition}]@{msg.offset()}: {e}",
                    topic=watermark.topic, partition=watermark.partition,
                ) from e

            if key_filter is None or key_filter(key):
                records.append((key, msg.value()))

            if watermark.is_watermark_achieved_by(msg.offset()):
                break
    finally:
        consumer.close()

    if console:
        console.log(
            f"[dim]{watermark.topic}[{watermark.partition}]: drained offsets "
            f"{watermark.low}..{watermark.high - 1} ({len(records):,} kept)[/dim]"
        )

    return records
