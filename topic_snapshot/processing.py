"""Single topic processing: load the snapshot, then export it."""

import time

from .export import ExportedTopic
from .filters import create_key_filter


class ProcessingUnit:
    """
    Loads one topic's snapshot and hands it to the exporter.

    A loader failure propagates before the exporter runs, so a failed topic
    never produces an export file.
    """

    def __init__(self, topic_config, loader, exporter, console=None):
        self.topic_config = topic_config
        self.loader = loader
        self.exporter = exporter
        self.console = console

        self.key_filter = create_key_filter(
            topic_config.filter_type, topic_config.key_type, topic_config.filter_value
        )
        self.exported_topic = ExportedTopic(
            topic_config.name, topic_config.export_name, topic_config.export_raw_message
        )
        self.phase_times = {}

    @property
    def topic_name(self):
        return self.topic_config.name

    def process(self, cancel_event=None):
        """Run the topic end to end and return the ExportResult."""
        topic = self.topic_config

        if self.console:
            self.console.log(f"[blue][INFO][/blue] {topic.name}: Loading snapshot"
                             f"{' with compacting' if topic.load_with_compacting else ''}...")

        start = time.perf_counter()
        snapshot = self.loader.load_compact_snapshot(
            topic.name,
            topic.load_with_compacting,
            key_filter=self.key_filter,
            start_date=topic.starting_date,
            cancel_event=cancel_event,
        )
        self.phase_times["load"] = time.perf_counter() - start

        start = time.perf_counter()
        result = self.exporter.export(snapshot, self.exported_topic)
        self.phase_times["export"] = time.perf_counter() - start

        return result
