"""
Tests for watermark capture.

Validates:
- Empty partitions are left out, ready ones keep their exact offsets
- Metadata and offset query failures abort the whole load
- The metadata consumer is always closed
"""

import threading
from datetime import datetime, timezone

import pytest
from confluent_kafka import KafkaError, KafkaException

from conftest import FakeCluster, kv
from topic_snapshot.errors import CancelledError, MetadataError, WatermarkQueryError
from topic_snapshot.watermarks import PartitionWatermark, TopicWatermark, load_topic_watermark


class TestPartitionWatermark:

    def test_ready_when_high_above_low(self):
        assert PartitionWatermark("t", 0, 3, 5).is_ready_to_read()
        assert not PartitionWatermark("t", 0, 5, 5).is_ready_to_read()

    def test_high_below_low_rejected(self):
        with pytest.raises(ValueError):
            PartitionWatermark("t", 0, 6, 5)

    def test_watermark_achieved_at_last_offset(self):
        watermark = PartitionWatermark("t", 0, 0, 5)
        assert not watermark.is_watermark_achieved_by(3)
        assert watermark.is_watermark_achieved_by(4)
        assert watermark.is_watermark_achieved_by(7)

    def test_topic_partition_starts_at_low(self):
        tp = PartitionWatermark("t", 2, 10, 20).topic_partition()
        assert (tp.topic, tp.partition, tp.offset) == ("t", 2, 10)

    def test_immutable(self):
        watermark = PartitionWatermark("t", 0, 0, 5)
        with pytest.raises(AttributeError):
            watermark.high = 10


class TestLoadTopicWatermark:

    def test_filters_empty_partitions(self, cluster, console):
        topic_watermark = load_topic_watermark("orders", cluster.factory, 5, console=console)

        assert isinstance(topic_watermark, TopicWatermark)
        assert [(w.partition, w.low, w.high) for w in topic_watermark] == [(0, 0, 3), (2, 0, 2)]
        assert topic_watermark.expected_messages == 5

    def test_keeps_low_offset_after_retention(self):
        cluster = FakeCluster(partitions={0: [kv("a", "1"), kv("b", "2")]}, low_offsets={0: 40})

        topic_watermark = load_topic_watermark("orders", cluster.factory, 5)

        assert [(w.low, w.high) for w in topic_watermark] == [(40, 42)]

    def test_all_partitions_empty_gives_empty_watermark(self):
        cluster = FakeCluster(partitions={0: [], 1: []})

        topic_watermark = load_topic_watermark("orders", cluster.factory, 5)

        assert topic_watermark.is_empty
        assert len(topic_watermark) == 0

    def test_unknown_topic_raises_metadata_error(self, cluster):
        with pytest.raises(MetadataError) as exc_info:
            load_topic_watermark("missing", cluster.factory, 5)

        assert exc_info.value.topic == "missing"
        assert cluster.open_count == cluster.close_count == 1

    def test_metadata_timeout_raises_metadata_error(self, cluster, kafka_exception):
        cluster.metadata_error = kafka_exception

        with pytest.raises(MetadataError):
            load_topic_watermark("orders", cluster.factory, 5)

        assert cluster.close_count == 1

    def test_one_failing_partition_aborts_load(self, cluster):
        cluster.watermark_failures[2] = KafkaException(KafkaError(KafkaError._TIMED_OUT))

        with pytest.raises(WatermarkQueryError) as exc_info:
            load_topic_watermark("orders", cluster.factory, 5)

        assert exc_info.value.partition == 2
        assert cluster.open_count == cluster.close_count == 1

    def test_cancelled_before_queries(self, cluster):
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(CancelledError):
            load_topic_watermark("orders", cluster.factory, 5, cancel_event=cancel_event)

        assert cluster.close_count == 1

    def test_start_date_moves_low_offset(self, cluster):
        cluster.offsets_for_times = {0: 2, 2: -1}
        start_date = datetime(2024, 10, 1, tzinfo=timezone.utc)

        topic_watermark = load_topic_watermark("orders", cluster.factory, 5, start_date=start_date)

        # Partition 2 has nothing after the date
        assert [(w.partition, w.low, w.high) for w in topic_watermark] == [(0, 2, 3)]
