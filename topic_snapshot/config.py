"""
Configuration for topic snapshots.

Connection, output and tuning settings come from environment variables with
sensible defaults. The list of topics to snapshot comes from a JSON file
pointed to by TOPICS_CONFIG:

    {
      "use_concurrent_load": true,
      "topics": [
        {
          "name": "orders",
          "key_type": "json",
          "compacting": "on",
          "export_file_name": "orders.json",
          "export_raw_message": false,
          "filter_type": "equals",
          "filter_value": "{\"id\": 42}",
          "offset_start_date": "2024-10-01T00:00:00+00:00"
        }
      ]
    }

When TOPICS_CONFIG is not set every non-internal topic is snapshotted with
the defaults below.
"""

import json
import os
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .errors import ConfigurationError

# Configuration - read from environment variables with sensible defaults
BOOTSTRAP_SERVERS = os.getenv("BOOTSTRAP_SERVERS", "localhost:9092")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "./data/snapshots")
LOG_DIR = os.getenv("LOG_DIR", "./logs")
TOPICS_CONFIG = os.getenv("TOPICS_CONFIG")  # Path to JSON topics file, None = all topics
METADATA_TIMEOUT = float(os.getenv("METADATA_TIMEOUT", "5"))  # Seconds for metadata and watermark queries
POLL_TIMEOUT = float(os.getenv("POLL_TIMEOUT", "1.0"))  # Seconds per poll, also the cancellation check interval
EXPORT_FORMAT = os.getenv("EXPORT_FORMAT", "json")  # json or parquet
VALUE_FORMAT = os.getenv("VALUE_FORMAT", "json")  # json, msgpack or auto - used when exporting decoded values
USE_CONCURRENT_LOAD = os.getenv("USE_CONCURRENT_LOAD", "true").lower() in ("true", "1", "yes")
MAX_WORKERS = int(os.getenv("MAX_WORKERS", "4"))  # Parallel topic processing
SKIP_VALIDATION = os.getenv("SKIP_VALIDATION", "false").lower() in ("true", "1", "yes")

# Advanced Performance Configuration
PARQUET_COMPRESSION = os.getenv("PARQUET_COMPRESSION", "zstd")  # snappy, zstd, gzip
COMPRESSION_LEVEL = int(os.getenv("COMPRESSION_LEVEL", "3"))  # 1-22 for zstd
FETCH_MIN_BYTES = int(os.getenv("FETCH_MIN_BYTES", "1048576"))  # 1MB
MAX_PARTITION_FETCH_BYTES = int(os.getenv("MAX_PARTITION_FETCH_BYTES", "52428800"))  # 50MB

# Each run reads with its own consumer groups and never commits offsets
SESSION_ID = str(uuid.uuid4())[:8]

KEY_TYPES = ("string", "json", "long")
FILTER_TYPES = ("none", "equals")
COMPACTING_MODES = ("on", "off")
EXPORT_FORMATS = ("json", "parquet")

MAX_TOPIC_NAME_LENGTH = 249
TOPIC_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


@dataclass
class TopicConfig:
    """One topic to snapshot."""
    name: str
    key_type: str = "string"
    compacting: str = "off"
    export_file_name: Optional[str] = None
    export_raw_message: bool = True
    filter_type: str = "none"
    filter_value: Optional[str] = None
    offset_start_date: Optional[str] = None

    @property
    def load_with_compacting(self) -> bool:
        return self.compacting == "on"

    @property
    def export_name(self) -> str:
        if self.export_file_name:
            return self.export_file_name
        return f"{self.name}.{EXPORT_FORMAT}"

    @property
    def starting_date(self) -> Optional[datetime]:
        if not self.offset_start_date:
            return None
        parsed = datetime.fromisoformat(self.offset_start_date)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


@dataclass
class ToolConfig:
    """Topics file contents."""
    topics: List[TopicConfig] = field(default_factory=list)
    use_concurrent_load: bool = USE_CONCURRENT_LOAD


def validate_topic_name(name) -> Optional[str]:
    """Return a failure message for an invalid topic name, None when valid."""
    if name is None or not isinstance(name, str) or name == "":
        return "Topic name is not set"
    if any(ch.isspace() for ch in name):
        return f"Topic name '{name}' contains whitespace"
    if len(name) > MAX_TOPIC_NAME_LENGTH:
        return f"Topic name '{name[:20]}...' is longer than {MAX_TOPIC_NAME_LENGTH} characters"
    if not TOPIC_NAME_PATTERN.match(name):
        return f"Topic name '{name}' contains characters other than [a-zA-Z0-9._-]"
    return None


def validate_configuration(config: Optional[ToolConfig]) -> List[str]:
    """
    Check a loaded configuration.

    Returns a list of failure messages; an empty list means the
    configuration is valid.
    """
    if config is None:
        return ["Configuration is not set"]
    if config.topics is None:
        return ["Topics are not set"]
    if not config.topics:
        return ["Topics list is empty"]

    failures = []
    seen = set()
    for topic in config.topics:
        name_failure = validate_topic_name(topic.name)
        if name_failure:
            failures.append(name_failure)
            continue

        if topic.name in seen:
            failures.append(f"Topic '{topic.name}' is configured more than once")
        seen.add(topic.name)

        if topic.key_type not in KEY_TYPES:
            failures.append(f"{topic.name}: unknown key type '{topic.key_type}'")
        if topic.compacting not in COMPACTING_MODES:
            failures.append(f"{topic.name}: unknown compacting mode '{topic.compacting}'")
        if topic.filter_type not in FILTER_TYPES:
            failures.append(f"{topic.name}: unknown filter type '{topic.filter_type}'")
        elif topic.filter_type == "equals":
            if topic.filter_value is None:
                failures.append(f"{topic.name}: equals filter requires a filter value")
            elif topic.key_type == "long":
                try:
                    int(topic.filter_value)
                except (TypeError, ValueError):
                    failures.append(f"{topic.name}: filter value '{topic.filter_value}' is not a long")
            elif topic.key_type == "json":
                try:
                    json.loads(topic.filter_value)
                except (TypeError, ValueError):
                    failures.append(f"{topic.name}: filter value '{topic.filter_value}' is not valid JSON")
        if topic.export_file_name is not None and not str(topic.export_file_name).strip():
            failures.append(f"{topic.name}: export file name is empty")
        if topic.offset_start_date:
            try:
                topic.starting_date
            except (TypeError, ValueError):
                failures.append(f"{topic.name}: offset start date '{topic.offset_start_date}' is not ISO-8601")

    return failures


def parse_flag(value, default):
    """Read a boolean setting given as a JSON bool or as text like the env flags."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1", "yes")


def parse_configuration(data: dict) -> ToolConfig:
    """Build a ToolConfig from the decoded topics file."""
    raw_topics = data.get("topics")
    topics = None
    if raw_topics is not None:
        if not isinstance(raw_topics, list):
            raise ConfigurationError(["Topics must be a JSON array"])
        malformed = [i for i, entry in enumerate(raw_topics) if not isinstance(entry, dict)]
        if malformed:
            raise ConfigurationError([f"Topic entry #{i} must be a JSON object" for i in malformed])
        topics = []
        for entry in raw_topics:
            compacting = entry.get("compacting", "off")
            if isinstance(compacting, bool):
                compacting = "on" if compacting else "off"
            topics.append(TopicConfig(
                name=entry.get("name"),
                key_type=str(entry.get("key_type", "string")).lower(),
                compacting=str(compacting).lower(),
                export_file_name=entry.get("export_file_name"),
                export_raw_message=parse_flag(entry.get("export_raw_message"), True),
                filter_type=str(entry.get("filter_type", "none")).lower(),
                filter_value=entry.get("filter_value"),
                offset_start_date=entry.get("offset_start_date"),
            ))
    return ToolConfig(
        topics=topics,
        use_concurrent_load=parse_flag(data.get("use_concurrent_load"), USE_CONCURRENT_LOAD),
    )


def load_configuration(path: str) -> ToolConfig:
    """Read and validate the topics file, raising ConfigurationError on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError([f"Cannot read topics file {path}: {e}"]) from e

    if not isinstance(data, dict):
        raise ConfigurationError([f"Topics file {path} must contain a JSON object"])

    config = parse_configuration(data)
    failures = validate_configuration(config)
    if failures:
        raise ConfigurationError(failures)
    return config


def default_configuration(topic_names: List[str]) -> ToolConfig:
    """Snapshot every given topic with default settings."""
    return ToolConfig(topics=[TopicConfig(name=name) for name in topic_names])
