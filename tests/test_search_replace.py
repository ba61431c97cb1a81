import json

import pytest

from genstream.core.errors import DiffNotApplicable
from genstream.core.search_replace import (
    Replacement,
    apply_search_replace,
    merge_search_replace_changes,
    parse_diff_response,
    parse_search_replace_response,
)

APP = "import React from 'react';\n\nexport default function App() {\n  return <h1>Hello</h1>;\n}\n"


def diff(changes, deleted=None):
    return json.dumps({"explanation": "edit", "changes": changes, "deletedFiles": deleted or []})


def test_missing_fragment_is_skipped_others_apply():
    text = diff({"src/App.tsx": {"replacements": [
        {"search": "<h1>Hello</h1>", "replace": "<h1>Hi</h1>"},
        {"search": "this is not in the file", "replace": "x"},
        {"search": "import React from 'react';", "replace": "import React, { useState } from 'react';"},
    ]}})
    batch = parse_diff_response(text, {"src/App.tsx": APP})
    content = batch.files["src/App.tsx"]
    assert "<h1>Hi</h1>" in content
    assert "useState" in content
    assert [f.search for f in batch.failed_edits] == ["this is not in the file"]


def test_repeated_fragment_replaces_first_occurrence_only():
    content, applied, failed = apply_search_replace("a = 1\nb = 2\na = 1\n", [Replacement(search="a = 1", replace="a = 3")])
    assert content == "a = 3\nb = 2\na = 1\n"
    assert applied == 1
    assert failed == []


def test_directives_apply_in_order_to_evolving_content():
    content, applied, _ = apply_search_replace("x", [Replacement(search="x", replace="y"), Replacement(search="y", replace="z")])
    assert content == "z"
    assert applied == 2


def test_crlf_normalized_match():
    content, applied, _ = apply_search_replace("one\r\ntwo\r\n", [Replacement(search="one\ntwo", replace="three")])
    assert content == "three\n"
    assert applied == 1


def test_json_escaped_fragment_match():
    content, applied, _ = apply_search_replace("line1\nline2", [Replacement(search="line1\\nline2", replace="joined")])
    assert content == "joined"
    assert applied == 1


def test_nothing_applied_raises():
    text = diff({"src/App.tsx": {"replacements": [{"search": "absent", "replace": "x"}]}})
    with pytest.raises(DiffNotApplicable):
        parse_diff_response(text, {"src/App.tsx": APP})


def test_unparseable_diff_raises_not_applicable():
    with pytest.raises(DiffNotApplicable):
        parse_diff_response("no json here", {"src/App.tsx": APP})


def test_new_files_and_deletions_count():
    text = diff({
        "src/Button.tsx": "export const Button = () => <button />;",
        "src/Old.tsx": {"isDeleted": True},
    }, deleted=["src/Gone.tsx"])
    working = {"src/App.tsx": APP, "src/Old.tsx": "old content here", "src/Gone.tsx": "gone content here"}
    batch = parse_diff_response(text, working)
    assert list(batch.files) == ["src/Button.tsx"]
    assert sorted(batch.deleted_files) == ["src/Gone.tsx", "src/Old.tsx"]


def test_parse_accepts_files_key_and_is_new():
    response = parse_search_replace_response(json.dumps({"files": {
        "src/New.tsx": {"isNew": True, "content": "export const New = 1;"},
    }}))
    change = response.changes["src/New.tsx"]
    assert change.is_new
    assert change.content == "export const New = 1;"


def test_merge_stats_and_ignored_paths():
    response = parse_search_replace_response(diff({
        "src/App.tsx": {"replacements": [{"search": "Hello", "replace": "Bye"}]},
        "node_modules/x/index.js": "module.exports = 1;",
        "src/tiny.tsx": {"isNew": True, "content": "x"},
    }))
    result = merge_search_replace_changes({"src/App.tsx": APP}, response)
    assert result.stats.updated == 1
    assert result.stats.failed == 1
    assert "node_modules/x/index.js" not in result.files
    assert "Bye" in result.files["src/App.tsx"]
    assert not result.success
