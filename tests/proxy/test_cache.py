"""
Unit tests for the tool list disk cache.
"""

import json
import time

import pytest

from mcp_bridge.proxy.cache import MAX_CACHE_AGE_SECONDS, CachedToolRecord, ToolsCache


def record(name="search", server="mail"):
    return CachedToolRecord(
        name=name,
        description=f"{name} tool",
        server_name=server,
        input_schema={"type": "object", "properties": {"q": {"type": "string"}}},
    )


class TestCachedToolRecord:
    """Test the CachedToolRecord dataclass."""

    def test_dict_format(self):
        data = record().to_dict()

        assert data == {
            "name": "search",
            "description": "search tool",
            "inputSchema": {"type": "object", "properties": {"q": {"type": "string"}}},
            "serverName": "mail",
        }
        assert CachedToolRecord.from_dict(data) == record()

    def test_missing_server_name(self):
        with pytest.raises(ValueError, match="serverName"):
            CachedToolRecord.from_dict({"name": "search"})

    def test_missing_description_defaults_to_empty(self):
        parsed = CachedToolRecord.from_dict({"name": "search", "serverName": "mail"})

        assert parsed.description == ""
        assert parsed.input_schema == {}

    def test_non_string_description(self):
        with pytest.raises(ValueError, match="description"):
            CachedToolRecord.from_dict({"name": "search", "serverName": "mail", "description": 5})

    def test_to_discovered_tool(self):
        tool = record().to_discovered_tool()

        assert tool.name == "search"
        assert tool.server_name == "mail"


class TestToolsCache:
    """Test the ToolsCache class."""

    def test_save_and_load(self, tmp_path):
        cache = ToolsCache(tmp_path / "nested" / "tools-cache.json")

        assert cache.save([record("search"), record("list_events", "calendar")])
        loaded = cache.load()

        assert [(r.name, r.server_name) for r in loaded] == [("search", "mail"), ("list_events", "calendar")]

    def test_file_format(self, tmp_path):
        path = tmp_path / "tools-cache.json"
        ToolsCache(path).save([record()], timestamp=1700000000.5)

        data = json.loads(path.read_text())

        assert data["timestamp"] == 1700000000500
        assert data["tools"][0]["serverName"] == "mail"
        assert list(tmp_path.iterdir()) == [path]

    def test_missing_file(self, tmp_path):
        assert ToolsCache(tmp_path / "tools-cache.json").load() is None

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "tools-cache.json"
        path.write_text("{truncated")

        assert ToolsCache(path).load() is None

    def test_invalid_layout(self, tmp_path):
        path = tmp_path / "tools-cache.json"
        path.write_text(json.dumps({"timestamp": "yesterday", "tools": []}))

        assert ToolsCache(path).load() is None

    def test_invalid_record(self, tmp_path):
        path = tmp_path / "tools-cache.json"
        path.write_text(json.dumps({"timestamp": int(time.time() * 1000), "tools": [{"name": "x"}]}))

        assert ToolsCache(path).load() is None

    def test_mistyped_description(self, tmp_path):
        path = tmp_path / "tools-cache.json"
        path.write_text(json.dumps({
            "timestamp": int(time.time() * 1000),
            "tools": [{"name": "send_mail", "description": 5, "inputSchema": {}, "serverName": "mail"}],
        }))

        assert ToolsCache(path).load() is None

    def test_stale_cache_is_ignored(self, tmp_path):
        cache = ToolsCache(tmp_path / "tools-cache.json")
        cache.save([record()], timestamp=time.time() - MAX_CACHE_AGE_SECONDS - 60)

        assert cache.load() is None

    def test_cache_just_within_age(self, tmp_path):
        cache = ToolsCache(tmp_path / "tools-cache.json")
        now = time.time()
        cache.save([record()], timestamp=now - MAX_CACHE_AGE_SECONDS + 60)

        assert cache.load(now=now) is not None

    def test_save_replaces_previous(self, tmp_path):
        cache = ToolsCache(tmp_path / "tools-cache.json")
        cache.save([record("old")])
        cache.save([record("new")])

        assert [r.name for r in cache.load()] == ["new"]

    def test_save_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        cache = ToolsCache(blocker / "tools-cache.json")

        assert cache.save([record()]) is False

    def test_clear(self, tmp_path):
        cache = ToolsCache(tmp_path / "tools-cache.json")
        cache.save([record()])

        assert cache.clear() is True
        assert cache.load() is None
        assert cache.clear() is False
