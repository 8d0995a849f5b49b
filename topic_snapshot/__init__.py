"""
Topic Snapshot - point-in-time exports of Kafka / Redpanda topics.

Captures per-partition high watermarks, drains every partition up to them in
parallel, optionally compacts to the latest value per key and writes the
result to JSON or Parquet.
"""

__version__ = "0.1.0"
