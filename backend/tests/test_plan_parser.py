import json

import pytest

from sitecraft.errors import UnparsableResponseError
from sitecraft.plan_parser import extract_first_object, normalize_plan, parse_plan


PAYLOAD = {
    "files": {"app/page.tsx": "export default function Page() { return <div>{'{'}</div>; }"},
    "dependencies": {"framer-motion": "^11.0.0"},
}


def test_parses_bare_json():
    plan = parse_plan(json.dumps(PAYLOAD))
    assert plan.files == PAYLOAD["files"]
    assert plan.dependencies == {"framer-motion": "^11.0.0"}
    assert plan.delete == []
    assert plan.commands == []
    assert plan.actions == []


def test_parses_json_fence_inside_prose():
    text = "Sure! Here is the plan:\n```json\n" + json.dumps(PAYLOAD, indent=2) + "\n```\nLet me know."
    assert parse_plan(text).files == PAYLOAD["files"]


def test_parses_unlabelled_fence():
    text = "Plan below\n```\n" + json.dumps(PAYLOAD) + "\n```"
    assert parse_plan(text).files == PAYLOAD["files"]


def test_parses_object_embedded_in_prose_without_fence():
    text = "I will create the page. " + json.dumps(PAYLOAD) + " Hope that helps {not json}."
    assert parse_plan(text).files == PAYLOAD["files"]


def test_brace_scan_ignores_braces_in_strings():
    text = 'prefix {"files": {"a.txt": "}{ \\" }"}} suffix'
    assert extract_first_object(text) == {"files": {"a.txt": '}{ " }'}}


def test_brace_scan_skips_invalid_span_and_keeps_looking():
    text = "{not: valid} then " + json.dumps({"files": {"b.txt": "x"}})
    assert parse_plan(text).files == {"b.txt": "x"}


def test_leading_bom_is_tolerated():
    assert parse_plan("\ufeff" + json.dumps(PAYLOAD)).files == PAYLOAD["files"]


def test_dev_dependencies_and_actions_are_kept():
    plan = parse_plan(json.dumps({
        "devDependencies": {"tailwindcss": "^3.4.0"},
        "actions": [{"type": "writeAnalyzed", "path": "app/about/page.tsx",
                     "fromAnalysisOf": "https://example.com", "target": "page"}],
    }))
    assert plan.dev_dependencies == {"tailwindcss": "^3.4.0"}
    assert plan.actions[0].type == "writeAnalyzed"
    assert plan.actions[0].from_analysis_of == "https://example.com"
    assert plan.actions[0].path == "app/about/page.tsx"


def test_non_string_file_content_is_serialized():
    plan = parse_plan(json.dumps({"files": {"data.json": {"a": 1}}}))
    assert json.loads(plan.files["data.json"]) == {"a": 1}


def test_bare_path_map_becomes_files():
    plan = normalize_plan({"app/page.tsx": "x", "app/layout.tsx": "y"})
    assert plan.files == {"app/page.tsx": "x", "app/layout.tsx": "y"}


@pytest.mark.parametrize("text", [
    "",
    "   \n ",
    "I could not produce a plan, sorry.",
    "```\nnot json either\n```",
    "[1, 2, 3]",
    "{broken: json,",
])
def test_unparsable_input_raises_typed_error(text):
    with pytest.raises(UnparsableResponseError):
        parse_plan(text)


def test_wrongly_typed_action_field_is_unparsable():
    with pytest.raises(UnparsableResponseError):
        parse_plan(json.dumps({"actions": [{"type": "requestAnalysis", "url": ["a", "b"]}]}))
