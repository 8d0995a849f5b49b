"""
pytest configuration for topic snapshot tests.

Provides an in-memory stand-in for the cluster: FakeCluster hands out
FakeConsumer handles that serve metadata, watermarks and messages, and
counts how many handles were opened and closed.
"""

import threading
from types import SimpleNamespace

import pytest
from confluent_kafka import KafkaError, KafkaException, TopicPartition
from rich.console import Console


class FakeMessage:
    def __init__(self, topic, partition, offset, key=None, value=None, error=None):
        self._topic = topic
        self._partition = partition
        self._offset = offset
        self._key = key
        self._value = value
        self._error = error

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset

    def key(self):
        return self._key

    def value(self):
        return self._value

    def error(self):
        return self._error


class FakeConsumer:
    """Serves one FakeCluster; behaves like a confluent_kafka Consumer."""

    def __init__(self, cluster):
        self.cluster = cluster
        self.assignment = None
        self.position = None
        self.eof_sent = False
        self.closed = False
        self.polls = 0

    def list_topics(self, topic=None, timeout=None):
        if self.cluster.metadata_error is not None:
            raise self.cluster.metadata_error
        topics = {}
        if topic == self.cluster.topic:
            topics[topic] = SimpleNamespace(
                error=None,
                partitions={p: SimpleNamespace(id=p) for p in self.cluster.partitions},
            )
        elif topic is not None:
            topics[topic] = SimpleNamespace(error=KafkaError(KafkaError.UNKNOWN_TOPIC_OR_PART), partitions={})
        return SimpleNamespace(topics=topics)

    def get_watermark_offsets(self, partition, timeout=None, cached=False):
        failure = self.cluster.watermark_failures.get(partition.partition)
        if failure is not None:
            raise failure
        return self.cluster.watermarks(partition.partition)

    def offsets_for_times(self, partitions, timeout=None):
        found = []
        for tp in partitions:
            offset = self.cluster.offsets_for_times.get(tp.partition, -1)
            found.append(TopicPartition(tp.topic, tp.partition, offset))
        return found

    def assign(self, partitions):
        assert len(partitions) == 1
        self.assignment = partitions[0].partition
        self.position = partitions[0].offset

    def poll(self, timeout=None):
        self.polls += 1
        partition = self.assignment
        if self.cluster.on_poll is not None:
            self.cluster.on_poll(self)

        failure = self.cluster.poll_failures.get(partition)
        if failure is not None:
            if isinstance(failure, KafkaError):
                return FakeMessage(self.cluster.topic, partition, self.position, error=failure)
            raise failure

        low, _ = self.cluster.watermarks(partition)
        messages = self.cluster.partitions[partition]
        index = self.position - low
        if 0 <= index < len(messages):
            key, value = messages[index]
            msg = FakeMessage(self.cluster.topic, partition, self.position, key, value)
            self.position += 1
            return msg

        if self.cluster.hang_at_end:
            return None
        if not self.eof_sent:
            self.eof_sent = True
            return FakeMessage(self.cluster.topic, partition, self.cluster.end_offset(partition),
                               error=KafkaError(KafkaError._PARTITION_EOF))
        return None

    def close(self):
        self.closed = True
        self.cluster.record_close(self)


class FakeCluster:
    """
    One topic held in memory.

    partitions maps partition number to a list of (key, value) pairs stored
    from offset low_offsets[partition] (default 0). trailing_offsets adds
    offsets after the last message that are never delivered, like
    transaction markers.
    """

    def __init__(self, topic="orders", partitions=None, low_offsets=None, trailing_offsets=None):
        self.topic = topic
        self.partitions = partitions if partitions is not None else {0: []}
        self.low_offsets = low_offsets or {}
        self.trailing_offsets = trailing_offsets or {}
        self.metadata_error = None
        self.watermark_failures = {}
        self.poll_failures = {}
        self.offsets_for_times = {}
        self.on_poll = None
        self.hang_at_end = False
        self.opened = []
        self.closed = []
        self._lock = threading.Lock()

    def watermarks(self, partition):
        low = self.low_offsets.get(partition, 0)
        return low, self.end_offset(partition)

    def end_offset(self, partition):
        low = self.low_offsets.get(partition, 0)
        return low + len(self.partitions[partition]) + self.trailing_offsets.get(partition, 0)

    def record_close(self, consumer):
        with self._lock:
            self.closed.append(consumer)

    def factory(self):
        consumer = FakeConsumer(self)
        with self._lock:
            self.opened.append(consumer)
        return consumer

    @property
    def open_count(self):
        return len(self.opened)

    @property
    def close_count(self):
        return len(self.closed)


def kv(key, value):
    """Encode a (key, value) pair the way they arrive from the broker."""
    return (
        key.encode("utf-8") if key is not None else None,
        value.encode("utf-8") if value is not None else None,
    )


@pytest.fixture
def cluster():
    return FakeCluster(
        topic="orders",
        partitions={
            0: [kv("k1", "v1"), kv("k2", "v2"), kv("k1", "v3")],
            1: [],
            2: [kv("k3", "v4"), kv(None, "v5")],
        },
    )


@pytest.fixture
def console():
    """Quiet rich console so log calls are exercised without terminal noise."""
    return Console(quiet=True)


@pytest.fixture
def kafka_exception():
    return KafkaException(KafkaError(KafkaError._TRANSPORT))
