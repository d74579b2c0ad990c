"""Tests for issue content hashing used by incremental sync."""

from __future__ import annotations

import pytest

from bdh.sync.hashing import (
    canonical_json,
    compute_issue_hash,
    compute_issue_hashes,
    extract_issues_by_id,
    find_changed_issues,
    find_deleted_issues,
    split_jsonl,
)


class TestIssueHash:
    def test_key_order_does_not_matter(self) -> None:
        a = compute_issue_hash('{"id":"bd-1","title":"x","labels":{"b":1,"a":2}}')
        b = compute_issue_hash('{"labels":{"a":2,"b":1},"title":"x","id":"bd-1"}')
        assert a == b

    def test_array_order_matters(self) -> None:
        a = compute_issue_hash('{"id":"bd-1","labels":["a","b"]}')
        b = compute_issue_hash('{"id":"bd-1","labels":["b","a"]}')
        assert a != b

    def test_versioned_sha256(self) -> None:
        result = compute_issue_hash('{"id":"bd-1"}')
        assert result is not None
        issue_id, digest = result
        assert issue_id == "bd-1"
        assert digest.startswith("v1:")
        assert len(digest) == len("v1:") + 64

    def test_missing_or_non_string_id_is_skipped(self) -> None:
        assert compute_issue_hash('{"title":"no id"}') is None
        assert compute_issue_hash('{"id":42}') is None

    def test_non_object_line_fails(self) -> None:
        with pytest.raises(ValueError):
            compute_issue_hash("[1, 2]")
        with pytest.raises(ValueError):
            compute_issue_hash("{not json")

    def test_canonical_json_keeps_unicode(self) -> None:
        assert canonical_json({"b": "ñ", "a": 1}) == '{"a":1,"b":"ñ"}'


class TestJsonl:
    def test_crlf_and_blank_lines(self) -> None:
        content = '{"id":"a"}\r\n\r\n{"id":"b"}\n'
        assert split_jsonl(content) == ['{"id":"a"}', '{"id":"b"}']
        assert set(compute_issue_hashes(content)) == {"a", "b"}

    def test_crlf_does_not_change_hash(self) -> None:
        assert compute_issue_hashes('{"id":"a"}\r\n') == compute_issue_hashes('{"id":"a"}\n')

    def test_one_bad_line_fails_everything(self) -> None:
        with pytest.raises(ValueError):
            compute_issue_hashes('{"id":"a"}\n"just a string"\n')


class TestDiff:
    def test_changed_includes_new_and_modified(self) -> None:
        current = {"a": "v1:1", "b": "v1:2", "c": "v1:3"}
        last = {"a": "v1:1", "b": "v1:old"}
        assert find_changed_issues(current, last) == ["b", "c"]

    def test_deleted(self) -> None:
        assert find_deleted_issues({"a": "x"}, {"a": "x", "z": "y", "m": "q"}) == ["m", "z"]

    def test_no_changes(self) -> None:
        hashes = {"a": "x"}
        assert find_changed_issues(hashes, dict(hashes)) == []
        assert find_deleted_issues(hashes, dict(hashes)) == []


class TestExtract:
    def test_original_lines_are_preserved(self) -> None:
        content = '{"id": "a",  "title": "spaced"}\n{"id":"b"}\nnot json\n{"id":"c"}\n'
        assert extract_issues_by_id(content, ["c", "a"]) == (
            '{"id": "a",  "title": "spaced"}\n{"id":"c"}'
        )

    def test_no_ids(self) -> None:
        assert extract_issues_by_id('{"id":"a"}', []) == ""

    def test_unknown_ids(self) -> None:
        assert extract_issues_by_id('{"id":"a"}', ["zzz"]) == ""
