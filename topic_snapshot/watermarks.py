"""
Watermark capture for topic snapshots.

A TopicWatermark fixes, before any reading starts, the window each
partition will be drained over: from the low (earliest retained or first
dated) offset up to the high watermark observed at query time. Partitions
with nothing in that window are left out.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Tuple

from confluent_kafka import KafkaException, TopicPartition

from .errors import CancelledError, MetadataError, WatermarkQueryError


@dataclass(frozen=True)
class PartitionWatermark:
    """Read window of one partition: [low, high)."""
    topic: str
    partition: int
    low: int
    high: int

    def __post_init__(self):
        if self.high < self.low:
            raise ValueError(
                f"{self.topic}[{self.partition}]: high offset {self.high} is below low offset {self.low}"
            )

    @property
    def message_count(self) -> int:
        return self.high - self.low

    def is_ready_to_read(self) -> bool:
        return self.high > self.low

    def is_watermark_achieved_by(self, offset: int) -> bool:
        """True once the message at offset is the last one inside the window."""
        return offset >= self.high - 1

    def topic_partition(self) -> TopicPartition:
        return TopicPartition(self.topic, self.partition, self.low)


@dataclass(frozen=True)
class TopicWatermark:
    """Ready partition watermarks of one topic, captured at one instant."""
    topic: str
    watermarks: Tuple[PartitionWatermark, ...] = ()

    def __iter__(self) -> Iterator[PartitionWatermark]:
        return iter(self.watermarks)

    def __len__(self) -> int:
        return len(self.watermarks)

    @property
    def is_empty(self) -> bool:
        return not self.watermarks

    @property
    def expected_messages(self) -> int:
        return sum(w.message_count for w in self.watermarks)


def get_partitions(consumer, topic, timeout):
    """Return sorted partition numbers for given topic."""
    try:
        md = consumer.list_topics(topic, timeout=timeout)
    except KafkaException as e:
        raise MetadataError(f"Cannot load metadata for topic {topic}: {e}", topic=topic) from e

    topic_md = md.topics.get(topic)
    if topic_md is None:
        raise MetadataError(f"Topic {topic} not found in cluster metadata", topic=topic)
    if topic_md.error is not None:
        raise MetadataError(f"Topic {topic} metadata error: {topic_md.error}", topic=topic)
    if not topic_md.partitions:
        raise MetadataError(f"Topic {topic} has no partitions", topic=topic)

    return sorted(topic_md.partitions.keys())


def query_partition_watermark(consumer, topic, partition, timeout):
    try:
        offsets = consumer.get_watermark_offsets(TopicPartition(topic, partition), timeout=timeout)
    except KafkaException as e:
        raise WatermarkQueryError(
            f"Watermark query failed for {topic}[{partition}]: {e}", topic=topic, partition=partition
        ) from e

    if offsets is None:
        raise WatermarkQueryError(
            f"Watermark query timed out for {topic}[{partition}]", topic=topic, partition=partition
        )

    low, high = offsets
    return PartitionWatermark(topic, partition, low, high)


def query_start_offset(consumer, watermark, start_date, timeout):
    """
    Offset of the first message at or after start_date, or None when the
    partition holds no such message.
    """
    timestamp_ms = int(start_date.timestamp() * 1000)
    try:
        found = consumer.offsets_for_times(
            [TopicPartition(watermark.topic, watermark.partition, timestamp_ms)], timeout=timeout
        )
    except KafkaException as e:
        raise WatermarkQueryError(
            f"Offset lookup by time failed for {watermark.topic}[{watermark.partition}]: {e}",
            topic=watermark.topic, partition=watermark.partition,
        ) from e

    offset = found[0].offset if found else -1
    if offset < 0:
        return None
    return offset


def load_topic_watermark(topic, consumer_factory, timeout, start_date: Optional[datetime] = None,
                         cancel_event=None, console=None) -> TopicWatermark:
    """
    Capture the read window of every partition of a topic.

    Args:
        topic: Topic name
        consumer_factory: Callable returning a new Consumer; the one created
            here is only used for metadata and is closed before returning
        timeout: Seconds allowed for each metadata / offset query
        start_date: Optional datetime; windows then start at the first
            message at or after it
        cancel_event: threading.Event checked between partition queries
        console: Rich console for logging

    Returns: TopicWatermark holding only partitions with readable messages

    Raises:
        MetadataError: topic missing or metadata unavailable
        WatermarkQueryError: any partition's offset query failed
        CancelledError: cancel_event was set
    """
    consumer = consumer_factory()

    try:
        partitions = get_partitions(consumer, topic, timeout)

        watermarks = []
        for partition in partitions:
            if cancel_event is not None and cancel_event.is_set():
                raise CancelledError(f"Watermark load cancelled for {topic}", topic=topic)

            watermark = query_partition_watermark(consumer, topic, partition, timeout)

            if start_date is not None and watermark.is_ready_to_read():
                start_offset = query_start_offset(consumer, watermark, start_date, timeout)
                if start_offset is None:
                    # Nothing at or after the date: empty window
                    start_offset = watermark.high
                watermark = PartitionWatermark(
                    topic, partition, min(max(watermark.low, start_offset), watermark.high), watermark.high
                )

            watermarks.append(watermark)

        ready = tuple(w for w in watermarks if w.is_ready_to_read())

        if console:
            console.log(
                f"[blue][INFO][/blue] {topic}: {len(ready)}/{len(partitions)} partitions ready, "
                f"{sum(w.message_count for w in ready):,} messages below watermark"
            )

        return TopicWatermark(topic, ready)
    finally:
        consumer.close()
