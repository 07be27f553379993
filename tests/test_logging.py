import json
import logging

from conftest import make_metadata
from scripts.extraction.logging_config import JsonFormatter, metadata_extra


def _record(**extra):
    record = logging.LogRecord("extraction.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_metadata_extra():
    extra = metadata_extra(make_metadata(crawl_id=9), kind="member")
    assert extra == {"tenant_id": 1, "crawl_id": 9, "forge": "github", "caller": "test", "kind": "member"}


def test_context_keys_are_lifted():
    entry = json.loads(JsonFormatter().format(_record(**metadata_extra(make_metadata()))))
    assert entry["message"] == "hello x"
    assert entry["logger"] == "extraction.test"
    assert (entry["crawl_id"], entry["forge"]) == (1, "github")
    assert "page" not in entry
