import json
import logging

from story_ingest.utils.logging import JsonFormatter


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("story_ingest.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_merges_extra_fields():
    line = JsonFormatter().format(_record("cache.lookup", cache_hits=3, cache_misses=1))

    payload = json.loads(line)
    assert payload["event"] == "cache.lookup"
    assert payload["level"] == "INFO"
    assert payload["cache_hits"] == 3
    assert payload["cache_misses"] == 1
    assert "msg" not in payload


def test_json_formatter_serializes_unknown_types():
    from datetime import datetime, timezone

    when = datetime(2025, 1, 1, tzinfo=timezone.utc)
    payload = json.loads(JsonFormatter().format(_record("ingest.start", started=when)))

    assert payload["started"].startswith("2025-01-01")
