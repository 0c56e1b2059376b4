"""Tests for the site config document parser."""

from __future__ import annotations

import json

import pytest

from vodhub.domain.entities import Capability, RuntimeKind
from vodhub.domain.errors import ConfigValidationError
from vodhub.infrastructure.config_source.parser import (
    clean_document,
    extract_sites,
    parse,
    parse_config,
    strip_comments,
)


def _doc(*sites: dict, **top) -> str:
    return json.dumps({"sites": list(sites), **top})


def _site(key: str = "a", **fields) -> dict:
    entry = {
        "key": key,
        "name": key.upper(),
        "runtimeKind": "script-plugin",
        "sourceLocation": f"https://example.com/{key}.py",
    }
    entry.update(fields)
    return entry


class TestCleaning:
    def test_strip_line_and_block_comments(self) -> None:
        text = '{ // lead\n "a": 1, /* block\n more */ "b": 2 }'
        assert json.loads(strip_comments(text)) == {"a": 1, "b": 2}

    def test_comment_markers_inside_strings_survive(self) -> None:
        text = '{"url": "https://example.com/x", "note": "/* keep */"}'
        assert json.loads(strip_comments(text)) == {
            "url": "https://example.com/x",
            "note": "/* keep */",
        }

    def test_escaped_quote_does_not_end_string(self) -> None:
        text = '{"a": "say \\"hi\\" // not a comment"}'
        assert json.loads(strip_comments(text))["a"] == 'say "hi" // not a comment'

    def test_clean_removes_bom_and_control_chars(self) -> None:
        text = '\ufeff{"a":\x01 1}'
        assert json.loads(clean_document(text)) == {"a": 1}


class TestCanonicalEntries:
    def test_single_site(self) -> None:
        [d] = parse(_doc(_site("a")))
        assert d.key == "a"
        assert d.name == "A"
        assert d.runtime_kind is RuntimeKind.SCRIPT
        assert d.source_location == "https://example.com/a.py"
        assert d.enabled is True
        assert d.capabilities == frozenset(Capability)

    def test_repeated_key_last_wins(self) -> None:
        result = parse(_doc(_site("a", name="First"), _site("b"), _site("a", name="Second")))
        assert [d.key for d in result] == ["b", "a"]
        assert result[1].name == "Second"

    def test_top_level_list_accepted(self) -> None:
        assert [d.key for d in parse(json.dumps([_site("x")]))] == ["x"]

    def test_explicit_capabilities_and_unknown_ones(self) -> None:
        result = parse_config(_doc(_site("a", capabilities=["search", "teleport"])))
        [d] = result.descriptors
        assert d.capabilities == frozenset({Capability.SEARCH})
        assert any("teleport" in w for w in result.warnings)
        assert result.dropped == 0

    def test_unsearchable_site_gets_no_search_capability(self) -> None:
        [d] = parse(_doc(_site("a", searchable=0)))
        assert d.searchable is False
        assert Capability.SEARCH not in d.capabilities

    def test_flags_accept_ints_and_strings(self) -> None:
        [d] = parse(_doc(_site("a", enabled="false", quickSearch=0)))
        assert d.enabled is False
        assert d.quick_searchable is False

    def test_optional_fields(self) -> None:
        [d] = parse(
            _doc(
                _site(
                    "a",
                    version=3,
                    updateTime="1700000000",
                    ext={"token": "t"},
                    categories=[1, "2"],
                    timeout=4,
                    header={"Referer": "https://r"},
                )
            )
        )
        assert d.version == "3"
        assert d.update_time == 1_700_000_000
        assert d.ext == {"token": "t"}
        assert d.categories == ("1", "2")
        assert d.timeout == 4
        assert d.headers == (("Referer", "https://r"),)

    def test_md5_suffix_becomes_checksum(self) -> None:
        md5 = "0123456789abcdef0123456789ABCDEF"
        entry = _site(
            "a",
            runtimeKind="archive-plugin",
            sourceLocation=f"https://example.com/a.zip;md5;{md5}",
        )
        [d] = parse(_doc(entry))
        assert d.source_location == "https://example.com/a.zip"
        assert d.checksum == md5.lower()

    def test_relative_location_resolved_against_config_url(self) -> None:
        [d] = parse(
            _doc(_site("a", sourceLocation="./plugins/a.py")),
            base_url="https://cfg.example.com/v1/sites.json",
        )
        assert d.source_location == "https://cfg.example.com/v1/plugins/a.py"

    def test_relative_location_resolved_against_local_file(self) -> None:
        [d] = parse(
            _doc(_site("a", sourceLocation="a.py")), base_url="/srv/config/sites.json"
        )
        assert d.source_location == "/srv/config/a.py"


class TestLegacyEntries:
    def test_class_name_api_uses_global_spider(self) -> None:
        doc = _doc(
            {"key": "csp_a", "name": "A", "type": 3, "api": "csp_Alpha"},
            spider="https://example.com/spider.jar",
        )
        [d] = parse(doc)
        assert d.runtime_kind is RuntimeKind.ARCHIVE
        assert d.source_location == "https://example.com/spider.jar"

    def test_per_site_jar_wins_over_spider(self) -> None:
        doc = _doc(
            {"key": "b", "type": 3, "api": "csp_Beta", "jar": "https://x/b.jar"},
            spider="https://example.com/spider.jar",
        )
        assert parse(doc)[0].source_location == "https://x/b.jar"

    @pytest.mark.parametrize(
        ("legacy", "kind"),
        [
            ("JAR", RuntimeKind.ARCHIVE),
            ("JS", RuntimeKind.SCRIPT),
            ("PY", RuntimeKind.INTERPRETED),
        ],
    )
    def test_legacy_string_types(self, legacy: str, kind: RuntimeKind) -> None:
        [d] = parse(_doc({"key": "k", "type": legacy, "api": "https://x/k"}))
        assert d.runtime_kind is kind

    def test_suffix_inference(self) -> None:
        [d] = parse(_doc({"key": "k", "api": "https://x/rules.yaml"}))
        assert d.runtime_kind is RuntimeKind.INTERPRETED

    def test_payloadless_legacy_types_are_dropped(self) -> None:
        result = parse_config(
            _doc(
                {"key": "cms", "type": 1, "api": "https://cms.example.com/api.php"},
                _site("ok"),
            )
        )
        assert [d.key for d in result.descriptors] == ["ok"]
        assert result.dropped == 1


class TestInvalidEntries:
    def test_entries_without_key_or_kind_are_dropped(self) -> None:
        result = parse_config(
            _doc(
                {"name": "no key", "runtimeKind": "script-plugin", "sourceLocation": "x.py"},
                {"key": "nokind", "sourceLocation": "https://x/unknown.bin"},
                _site("b", runtimeKind="warp-plugin"),
                "not an object",
                _site("good"),
            )
        )
        assert [d.key for d in result.descriptors] == ["good"]
        assert result.dropped == 4
        assert len(result.warnings) == 4

    def test_no_sites_array_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="sites"):
            parse('{"lives": []}')

    def test_no_valid_site_raises(self) -> None:
        with pytest.raises(ConfigValidationError):
            parse(_doc({"key": "x"}))


class TestFallbackExtraction:
    def test_unterminated_document_keeps_valid_sites(self) -> None:
        valid = json.dumps([_site("a"), _site("b")])
        text = '{"spider": "s.jar", "sites": ' + valid + ', "lives": [ {"broken": '
        result = parse_config(text)
        assert result.used_fallback is True
        assert [d.key for d in result.descriptors] == ["a", "b"]

    def test_truncated_trailing_element_is_skipped(self) -> None:
        text = '{"sites": [' + json.dumps(_site("a")) + ', {"key": "b", "na'
        assert [d.key for d in parse(text)] == ["a"]

    def test_extract_sites_handles_brackets_in_strings(self) -> None:
        text = '{"sites": [{"key": "a", "name": "[x] {y}"}, {"key": "b"}'
        assert extract_sites(text) == [{"key": "a", "name": "[x] {y}"}, {"key": "b"}]

    def test_extract_without_sites_key(self) -> None:
        assert extract_sites('{"lives": [') is None

    def test_fallback_recovers_spider(self) -> None:
        text = (
            '{"spider": "https://example.com/s.jar", "sites": ['
            '{"key": "c", "type": 3, "api": "csp_C"}] trailing garbage'
        )
        [d] = parse(text)
        assert d.source_location == "https://example.com/s.jar"
