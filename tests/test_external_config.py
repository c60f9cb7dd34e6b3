"""Tests for the external client's config store."""

import json

import pytest
from returns.result import Failure, Success

from src.bridge.external_config import ExternalConfigStore, validate_document
from src.core.result_pattern import ErrorKind


def write_json(path, document):
    path.write_text(json.dumps(document), encoding="utf-8")


class TestPathDiscovery:
    def test_explicit_path_wins(self, tmp_path):
        store = ExternalConfigStore(str(tmp_path / "custom.json"))
        assert store.get_config_path() == tmp_path / "custom.json"

    def test_first_existing_candidate(self, tmp_path):
        candidates = [tmp_path / "a.json", tmp_path / "b.json", tmp_path / "c.json"]
        candidates[1].write_text("{}")
        candidates[2].write_text("{}")

        store = ExternalConfigStore(candidate_paths=candidates)
        assert store.get_config_path() == candidates[1]

    def test_default_is_first_candidate(self, tmp_path):
        candidates = [tmp_path / "a.json", tmp_path / "b.json"]
        store = ExternalConfigStore(candidate_paths=candidates)
        assert store.get_config_path() == candidates[0]

    def test_found_path_is_cached(self, tmp_path):
        candidates = [tmp_path / "a.json", tmp_path / "b.json"]
        candidates[1].write_text("{}")
        store = ExternalConfigStore(candidate_paths=candidates)
        assert store.get_config_path() == candidates[1]

        candidates[0].write_text("{}")
        assert store.get_config_path() == candidates[1]


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_missing_file_reads_empty_document(self, config_store):
        result = await config_store.read()
        assert result == Success({"mcpServers": {}})

    @pytest.mark.asyncio
    async def test_malformed_json_is_config_io_error(self, config_store, config_path):
        config_path.write_text("{not json")

        result = await config_store.read()

        assert isinstance(result, Failure)
        assert result.failure().kind == ErrorKind.CONFIG_IO

    @pytest.mark.asyncio
    async def test_mutation_refused_on_malformed_file(self, config_store, config_path):
        config_path.write_text("{not json")

        result = await config_store.add("x", "cmd")

        assert isinstance(result, Failure)
        assert config_path.read_text() == "{not json"

    @pytest.mark.asyncio
    async def test_non_object_servers_section_is_never_overwritten(self, config_store, config_path):
        original = json.dumps({"mcpServers": [{"command": "keep"}], "other": 1})
        config_path.write_text(original)

        added = await config_store.add("x", "cmd")
        removed = await config_store.remove("x")
        updated = await config_store.update("x", command="y")

        for result in (added, removed, updated):
            assert result.failure().kind == ErrorKind.CONFIG_IO
        assert config_path.read_text() == original

    @pytest.mark.asyncio
    async def test_null_servers_section_counts_as_empty(self, config_store, config_path):
        write_json(config_path, {"mcpServers": None, "other": 1})

        await config_store.add("x", "cmd")

        assert json.loads(config_path.read_text()) == {"mcpServers": {"x": {"command": "cmd", "args": []}}, "other": 1}

    @pytest.mark.asyncio
    async def test_write_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "config.json"
        store = ExternalConfigStore(str(path))

        result = await store.write({"mcpServers": {}, "theme": "dark"})

        assert isinstance(result, Success)
        assert json.loads(path.read_text()) == {"mcpServers": {}, "theme": "dark"}
        assert not path.with_name("config.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_write_refuses_invalid_document(self, config_store, config_path):
        result = await config_store.write({"mcpServers": {"x": {"args": []}}})

        assert result.failure().kind == ErrorKind.CONFIG_VALIDATION
        assert result.failure().details["errors"] == ["Server 'x': command is required and must be a string"]
        assert not config_path.exists()


class TestEntries:
    @pytest.mark.asyncio
    async def test_add_then_get_round_trip(self, config_store):
        await config_store.add("x", "cmd", ["--flag"], {"K": "V"})

        entry = (await config_store.get("x")).unwrap()

        assert entry.command == "cmd"
        assert entry.args == ["--flag"]
        assert entry.env == {"K": "V"}

    @pytest.mark.asyncio
    async def test_empty_env_is_omitted(self, config_store, config_path):
        await config_store.add("x", "cmd", ["a"])

        document = json.loads(config_path.read_text())
        assert document["mcpServers"]["x"] == {"command": "cmd", "args": ["a"]}

    @pytest.mark.asyncio
    async def test_unrelated_keys_preserved(self, config_store, config_path):
        write_json(
            config_path,
            {"globalShortcut": "Ctrl+Space", "mcpServers": {"other": {"command": "node", "args": []}}},
        )

        await config_store.add("x", "cmd")
        await config_store.remove("other")

        document = json.loads(config_path.read_text())
        assert document["globalShortcut"] == "Ctrl+Space"
        assert list(document["mcpServers"]) == ["x"]

    @pytest.mark.asyncio
    async def test_remove(self, config_store):
        await config_store.add("x", "cmd")

        assert (await config_store.remove("x")).unwrap() is True
        assert (await config_store.remove("x")).unwrap() is False
        assert (await config_store.get("x")).unwrap() is None

    @pytest.mark.asyncio
    async def test_has_and_list(self, config_store):
        await config_store.add("a", "cmd-a")
        await config_store.add("b", "cmd-b", ["x"])

        assert (await config_store.has("a")).unwrap()
        assert not (await config_store.has("c")).unwrap()
        names = [entry.name for entry in (await config_store.list()).unwrap()]
        assert names == ["a", "b"]

    @pytest.mark.asyncio
    async def test_list_skips_malformed_entries(self, config_store, config_path):
        write_json(config_path, {"mcpServers": {"good": {"command": "x"}, "bad": {"args": []}}})

        names = [entry.name for entry in (await config_store.list()).unwrap()]

        assert names == ["good"]

    @pytest.mark.asyncio
    async def test_list_skips_entries_with_bad_field_types(self, config_store, config_path):
        write_json(
            config_path,
            {
                "mcpServers": {
                    "ok": {"command": "a", "args": ["x"]},
                    "bad_args": {"command": "b", "args": "oops"},
                    "bad_env": {"command": "c", "env": {"K": 1}},
                    "not_an_object": "d",
                }
            },
        )

        result = await config_store.list()

        assert [entry.name for entry in result.unwrap()] == ["ok"]
        assert (await config_store.get("bad_args")).unwrap() is None
        assert (await config_store.get("ok")).unwrap().args == ["x"]

    @pytest.mark.asyncio
    async def test_update(self, config_store):
        await config_store.add("x", "cmd", ["a"], {"K": "V"})

        assert (await config_store.update("x", args=["b"], env={})).unwrap() is True
        assert (await config_store.update("missing", command="y")).unwrap() is False

        entry = (await config_store.get("x")).unwrap()
        assert entry.command == "cmd"
        assert entry.args == ["b"]
        assert entry.env == {}


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_command_gives_single_error(self, config_store, config_path):
        write_json(
            config_path,
            {"mcpServers": {"ok": {"command": "node", "args": []}, "broken": {"args": ["x"]}}},
        )

        report = (await config_store.validate()).unwrap()

        assert report.valid is False
        assert len(report.errors) == 1
        assert "broken" in report.errors[0]

    @pytest.mark.asyncio
    async def test_reports_all_violations(self, config_store, config_path):
        write_json(
            config_path,
            {"mcpServers": {"a": {"command": 1, "args": "x", "env": []}, "b": {"command": "ok", "env": {"K": 1}}}},
        )

        report = (await config_store.validate()).unwrap()

        assert report.errors == [
            "Server 'a': command is required and must be a string",
            "Server 'a': args must be an array",
            "Server 'a': env must be an object",
            "Server 'b': env must be an object",
        ]

    @pytest.mark.asyncio
    async def test_invalid_json_reported(self, config_store, config_path):
        config_path.write_text("{")

        report = (await config_store.validate()).unwrap()

        assert not report.valid
        assert report.errors[0].startswith("Invalid JSON")

    @pytest.mark.asyncio
    async def test_missing_file_is_valid(self, config_store):
        assert (await config_store.validate()).unwrap().valid

    def test_document_shape(self):
        assert validate_document([]) == ["Config must be a JSON object"]
        assert validate_document({}) == ["Missing 'mcpServers' object"]
        assert validate_document({"mcpServers": []}) == ["'mcpServers' must be an object"]
        assert validate_document({"mcpServers": {}}) == []


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_backup(self, config_store, config_path):
        await config_store.add("x", "cmd")

        backup = (await config_store.backup()).unwrap()

        assert backup.exists()
        assert backup.read_text() == config_path.read_text()

    @pytest.mark.asyncio
    async def test_backup_without_file_fails(self, config_store):
        result = await config_store.backup()
        assert result.failure().kind == ErrorKind.CONFIG_IO

    @pytest.mark.asyncio
    async def test_info(self, config_store, config_path):
        missing = await config_store.info()
        assert not missing.exists

        await config_store.add("x", "cmd")
        info = await config_store.info()
        assert info.exists
        assert info.size == config_path.stat().st_size
        assert info.path == str(config_path)
