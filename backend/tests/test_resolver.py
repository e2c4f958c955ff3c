"""Tests for ${...} variable resolution."""

import pytest

from core.exceptions import VariableNotFound
from workflow.resolver import VariableResolver, resolve, split_path


CONTEXT = {
    "trigger": {"query": "drill", "limit": 2, "tags": ["diy", "cordless"]},
    "products": {
        "items": [
            {"title": "Cordless Drill 18V", "price": 89.9},
            {"title": "Hammer Drill 750W", "price": 64.5},
        ],
        "total": 2,
    },
    "answer": "Two drills found.",
}


# ─── Paths ───

class TestSplitPath:
    def test_dotted(self):
        assert split_path("trigger.query") == ["trigger", "query"]

    def test_bracket_index(self):
        assert split_path("products.items[1].title") == ["products", "items", "1", "title"]

    def test_malformed(self):
        with pytest.raises(VariableNotFound):
            split_path("trigger..query")


# ─── Whole-value references ───

class TestTypedResolution:
    def test_single_reference_keeps_type(self):
        assert resolve("${trigger.limit}", CONTEXT) == 2
        assert resolve("${products.items}", CONTEXT) == CONTEXT["products"]["items"]

    def test_index_forms_are_equivalent(self):
        assert resolve("${products.items[0].title}", CONTEXT) == "Cordless Drill 18V"
        assert resolve("${products.items.0.title}", CONTEXT) == "Cordless Drill 18V"

    def test_nested_template(self):
        template = {
            "message": "${trigger.query}",
            "options": {"limit": "${trigger.limit}", "fixed": True},
            "tags": ["${trigger.tags[1]}", "static"],
        }
        assert resolve(template, CONTEXT) == {
            "message": "drill",
            "options": {"limit": 2, "fixed": True},
            "tags": ["cordless", "static"],
        }

    def test_literals_pass_through(self):
        assert resolve(42, CONTEXT) == 42
        assert resolve(None, CONTEXT) is None
        assert resolve("no references here", CONTEXT) == "no references here"


# ─── Interpolation ───

class TestInterpolation:
    def test_mixed_text(self):
        assert resolve("Find ${trigger.query} (max ${trigger.limit})", CONTEXT) == "Find drill (max 2)"

    def test_structured_values_render_as_json(self):
        assert resolve("tags=${trigger.tags}", CONTEXT) == 'tags=["diy", "cordless"]'

    def test_deterministic(self):
        template = {"q": "${trigger.query} x ${products.total}"}
        assert resolve(template, CONTEXT) == resolve(template, CONTEXT)


# ─── Errors ───

class TestMissingVariables:
    def test_unknown_root(self):
        with pytest.raises(VariableNotFound, match="no variable named 'nothing'"):
            resolve("${nothing.here}", CONTEXT)

    def test_missing_key(self):
        with pytest.raises(VariableNotFound, match="'category' is missing"):
            resolve("${trigger.category}", CONTEXT)

    def test_index_out_of_range(self):
        with pytest.raises(VariableNotFound, match="out of range"):
            resolve("${products.items[5].title}", CONTEXT)

    def test_descend_into_scalar(self):
        with pytest.raises(VariableNotFound):
            resolve("${answer.length}", CONTEXT)

    def test_skipped_step_is_named(self):
        resolver = VariableResolver(CONTEXT, skipped={"draft": "write draft"})
        with pytest.raises(VariableNotFound, match="step 'write draft' was skipped") as exc:
            resolver.resolve({"text": "${draft.reply}"})
        assert exc.value.path == "draft.reply"

    def test_missing_reference_inside_text_fails(self):
        with pytest.raises(VariableNotFound):
            resolve("Hello ${trigger.name}", CONTEXT)
