"""Reader handles bound to the log cluster."""

from confluent_kafka import Consumer
from confluent_kafka.admin import AdminClient

from . import config


def consumer_settings(topic, purpose="reader", bootstrap_servers=None):
    """Consumer settings for read-only snapshot access to a topic."""
    return {
        "bootstrap.servers": bootstrap_servers or config.BOOTSTRAP_SERVERS,
        "group.id": f"{purpose}-{config.SESSION_ID}-{topic}",
        "auto.offset.reset": "earliest",
        "enable.partition.eof": True,
        "enable.auto.commit": False,  # Never commit offsets - every run reads the full window
        "fetch.min.bytes": config.FETCH_MIN_BYTES,
        "fetch.wait.max.ms": 100,
        "max.partition.fetch.bytes": config.MAX_PARTITION_FETCH_BYTES,
    }


class ConsumerFactory:
    """
    Creates a fresh, independently closable Consumer on every call.

    Every partition drain and every watermark load gets its own handle, so
    no Consumer is ever shared between threads.
    """

    def __init__(self, topic, purpose="reader", bootstrap_servers=None):
        self.topic = topic
        self.purpose = purpose
        self.bootstrap_servers = bootstrap_servers

    def __call__(self):
        return Consumer(consumer_settings(self.topic, self.purpose, self.bootstrap_servers))


def get_all_topics(bootstrap_servers=None, timeout=None):
    """List every non-internal topic on the cluster."""
    admin = AdminClient({"bootstrap.servers": bootstrap_servers or config.BOOTSTRAP_SERVERS})
    metadata = admin.list_topics(timeout=timeout or config.METADATA_TIMEOUT)
    return sorted(t for t in metadata.topics.keys() if not t.startswith("__"))  # skip internals
