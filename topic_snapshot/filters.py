"""Key filters applied to decoded keys while draining."""

import json


def accept_all(key):
    return True


class EqualsKeyFilter:
    """Keeps only messages whose key equals the configured sample value."""

    def __init__(self, key_type, sample):
        self.key_type = key_type
        if key_type == "long":
            self.sample = int(sample)
        elif key_type == "json":
            self.sample = json.loads(sample)
        else:
            self.sample = str(sample)

    def __call__(self, key):
        if key is None:
            return False
        if self.key_type == "json":
            try:
                return json.loads(key) == self.sample
            except ValueError:
                return False
        return key == self.sample

    def __repr__(self):
        return f"EqualsKeyFilter({self.key_type!r}, {self.sample!r})"


def create_key_filter(filter_type, key_type, filter_value=None):
    """Build the key predicate for a topic."""
    if filter_type == "none":
        return accept_all
    if filter_type == "equals":
        return EqualsKeyFilter(key_type, filter_value)
    raise ValueError(f"Filter type {filter_type} not supported")
