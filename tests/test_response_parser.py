import json

import pytest

from genstream.core.errors import NoFilesProduced, ParseError, TruncatedResponse
from genstream.core.response_parser import drop_trailing_commas, parse_standard_response, repair_json

from conftest import component


def test_returns_files_minus_ignored_paths():
    text = json.dumps({"explanation": "ok", "files": {
        "src/App.tsx": component("App"),
        "node_modules/react/index.js": "module.exports = {};",
        ".git/config": "[core] bare = false",
    }})
    batch = parse_standard_response(text)
    assert batch.files == {"src/App.tsx": component("App").strip()}
    assert batch.explanation == "ok"
    assert not batch.truncated


def test_plan_line_and_fence_are_stripped():
    body = json.dumps({"files": {"src/App.tsx": component("App")}})
    text = '// PLAN: {"create":["src/App.tsx"],"total":1}\n```json\n' + body + "\n```"
    batch = parse_standard_response(text)
    assert list(batch.files) == ["src/App.tsx"]


def test_drops_short_and_extension_only_content():
    text = json.dumps({"files": {"src/App.tsx": component("App"), "src/a.tsx": "tsx;", "src/b.css": "x"}})
    assert list(parse_standard_response(text).files) == ["src/App.tsx"]


def test_drops_malformed_paths():
    text = json.dumps({"files": {"src/App.tsx": component("App"), "src/components/.tsx": component("X"),
                                 "README": "some readme text here"}})
    assert list(parse_standard_response(text).files) == ["src/App.tsx"]


def test_paths_are_normalized_and_escapes_rejected():
    text = json.dumps({"files": {"./src/App.tsx": component("App"), "../etc/passwd.js": component("X"),
                                 "/abs/a.tsx": component("A")}})
    assert list(parse_standard_response(text).files) == ["src/App.tsx"]


def test_content_may_be_an_object():
    text = json.dumps({"fileChanges": {"src/App.tsx": {"code": component("App")}}})
    assert parse_standard_response(text).files["src/App.tsx"].startswith("export default")


def test_code_fences_inside_content_are_cleaned():
    text = json.dumps({"files": {"src/App.tsx": "```tsx\n" + component("App") + "```"}})
    assert parse_standard_response(text).files["src/App.tsx"] == component("App").strip()


def test_trailing_commas_are_repaired():
    text = '{"files": {"src/App.tsx": "export const App = () => null;",},}'
    batch = parse_standard_response(text)
    assert batch.files == {"src/App.tsx": "export const App = () => null;"}
    assert not batch.truncated


def test_missing_closers_after_complete_file():
    text = '{"files": {"src/App.tsx": "export const App = () => null;", "src/b.tsx": "export const B = 1;",'
    batch = parse_standard_response(text)
    assert set(batch.files) == {"src/App.tsx", "src/b.tsx"}
    assert batch.truncated


def test_ends_inside_string_is_truncated():
    text = '{"files": {"src/App.tsx": "export const App = () => null;", "src/b.tsx": "export const B ='
    with pytest.raises(TruncatedResponse):
        parse_standard_response(text)


def test_no_usable_files():
    with pytest.raises(NoFilesProduced) as exc:
        parse_standard_response('{"files": {"src/a.tsx": "short"}}')
    assert exc.value.raw_text


def test_no_json_is_parse_error():
    with pytest.raises(ParseError):
        parse_standard_response("I could not do that, sorry.")


def test_oversized_response_rejected():
    text = json.dumps({"files": {"src/App.tsx": component("App")}})
    with pytest.raises(ParseError):
        parse_standard_response(text, max_chars=10)


def test_generation_meta_defaults():
    text = json.dumps({"files": {"src/a.tsx": component("A")},
                       "generationMeta": {"totalFilesPlanned": 3, "remainingFiles": ["src/b.tsx"], "isComplete": False}})
    progress = parse_standard_response(text).progress
    assert progress.total_files_planned == 3
    assert progress.remaining_files == ["src/b.tsx"]
    assert progress.current_batch == 1
    assert progress.total_batches == 1
    assert progress.is_complete is False


def test_legacy_continuation_block():
    text = json.dumps({"files": {"src/a.tsx": component("A")},
                       "continuation": {"remainingFiles": ["src/b.tsx", "src/c.tsx"], "currentBatch": 1, "totalBatches": 2}})
    progress = parse_standard_response(text).progress
    assert progress.remaining_files == ["src/b.tsx", "src/c.tsx"]
    assert progress.total_files_planned == 3
    assert not progress.is_complete


def test_explanation_fallbacks():
    files = {"src/a.tsx": component("A")}
    assert parse_standard_response(json.dumps({"files": files, "description": "desc"})).explanation == "desc"
    assert parse_standard_response(json.dumps({"files": files})).explanation == "App generated successfully."


def test_deleted_files():
    text = json.dumps({"files": {"src/a.tsx": component("A")}, "deletedFiles": ["src/old.tsx", 3]})
    assert parse_standard_response(text).deleted_files == ["src/old.tsx"]


def test_trailing_comma_inside_string_untouched():
    assert drop_trailing_commas('{"a": "[1, ]", "b": [1, ]}') == '{"a": "[1, ]", "b": [1]}'


def test_repair_drops_dangling_key():
    repaired, closed = repair_json('{"files": {"a.tsx": "x", "b.tsx":')
    assert json.loads(repaired) == {"files": {"a.tsx": "x"}}
    assert closed


def test_ignored_directories_match_whole_segments():
    text = json.dumps({"files": {
        "src/App.tsx": component("App"),
        "src/utils/buildUrl.ts": component("buildUrl"),
        "src/distance.ts": component("distance"),
        "build/x.js": component("X"),
        "src/node_modules/a.js": component("A"),
        "dist/index.js": component("I"),
    }})
    assert list(parse_standard_response(text).files) == ["src/App.tsx", "src/utils/buildUrl.ts", "src/distance.ts"]


def test_generation_meta_total_defaults_to_completed_plus_remaining():
    text = json.dumps({"files": {"src/a.tsx": component("A")},
                       "generationMeta": {"completedFiles": ["src/a.tsx", "src/b.tsx"],
                                          "remainingFiles": ["src/c.tsx", "src/d.tsx", "src/e.tsx"],
                                          "isComplete": False}})
    assert parse_standard_response(text).progress.total_files_planned == 5
