import pytest

from webq.webq_datatypes import DiscardMarker
from webq.webq_transforms import (
    TEXT_TRANSFORMS,
    TransformContext,
    TransformRegistry,
    apply_filter,
    apply_index,
    apply_json_transform,
    apply_jseval,
    apply_pipeline,
    apply_regexp,
    apply_transform,
    apply_update,
    parse_filter,
    parse_regexp_pattern,
)
from webq.webq_variables import VariableEnvironment


class FakeSandbox:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []
        self.resets = 0

    def reset(self):
        self.resets += 1

    def evaluate_and_extract(self, script, variable_names=None):
        self.calls.append((script, variable_names))
        if self.error:
            raise self.error
        return self.result


def _ctx(**kwargs):
    return TransformContext(variables=VariableEnvironment(), **kwargs)


# --------------------------
# regexp
# --------------------------

def test_regexp_match_mode_returns_first_match():
    assert apply_regexp("price: 42 USD, 7 EUR", r"/\d+/") == "42"


def test_regexp_match_mode_without_match_is_absent():
    assert apply_regexp("abc", r"/\d+/") is None


def test_regexp_replacement_with_group_refs():
    assert apply_regexp("2024-01-15", r"/(\d+)-(\d+)-(\d+)/$3.$2.$1/") == "15.01.2024"


def test_regexp_replacement_replaces_all():
    assert apply_regexp("a-b-c", "/-/_/") == "a_b_c"


def test_regexp_replacement_unescapes_slash():
    assert apply_regexp("a b", r"/ /\//") == "a/b"


def test_regexp_all_token_matches_whole_text():
    assert apply_regexp("line1\nline2", r"/\ALL/x/") == "x"


def test_regexp_invalid_pattern_keeps_value():
    assert apply_regexp("abc", "/(/") == "abc"


def test_parse_regexp_pattern():
    assert parse_regexp_pattern("/a/b/") == ("a", "b")
    assert parse_regexp_pattern("/a/") == ("a", "")
    assert parse_regexp_pattern("") is None


# --------------------------
# json / update / jseval
# --------------------------

def test_json_transform_parses_text():
    assert apply_json_transform('{"a": [1, 2]}') == {"a": [1, 2]}


def test_json_transform_decodes_json_encoded_string():
    assert apply_json_transform('"{\\"a\\": 1}"') == {"a": 1}


def test_json_transform_passes_non_json_through():
    assert apply_json_transform("not json") == "not json"


@pytest.mark.parametrize("script, name, expected", [
    ('var data = {"a": 1};', "data", {"a": 1}),
    ("var list = [1, 2, 3];", "list", [1, 2, 3]),
    ("window.count = 42;", "window.count", 42),
    ("var flag = true;", "flag", True),
    ("var s = 'hi';", "s", "hi"),
    ('var s = "hi";', "s", "hi"),
    ("var nothing = null;", "nothing", None),
    ('cfg_main = {"k": "v"}', "cfg_*", {"k": "v"}),
])
def test_json_transform_extracts_assignment(script, name, expected):
    assert apply_json_transform(script, name) == expected


def test_json_transform_missing_assignment_is_absent():
    assert apply_json_transform("var a = 1;", "b") is None


def test_update_merges_objects():
    assert apply_update({"a": 1}, '{"b": 2}') == {"a": 1, "b": 2}
    assert apply_update({"a": 1}, '{"a": 5}') == {"a": 5}


def test_update_passes_through_non_dicts_and_bad_json():
    assert apply_update("text", '{"b": 2}') == "text"
    assert apply_update({"a": 1}, "{broken") == {"a": 1}
    assert apply_update({"a": 1}, "[1]") == {"a": 1}


def test_jseval_without_sandbox_is_absent():
    assert apply_jseval("var a = 1;", "a", None) is None


def test_jseval_passes_names_to_sandbox():
    sandbox = FakeSandbox(result={"a": 1, "b": 2})
    assert apply_jseval("var a = 1, b = 2;", "a, b", sandbox) == {"a": 1, "b": 2}
    assert sandbox.calls == [("var a = 1, b = 2;", ["a", "b"])]


def test_jseval_sandbox_failure_is_absent():
    sandbox = FakeSandbox(error=RuntimeError("boom"))
    assert apply_jseval("throw 1", None, sandbox) is None


# --------------------------
# filter / index
# --------------------------

def test_filter_includes_and_excludes():
    values = ["apple pie", "banana", "apple tart"]
    assert apply_filter(values, "apple !tart") == ["apple pie"]


def test_filter_on_scalar():
    assert apply_filter("apple pie", "pie") == "apple pie"
    assert apply_filter("apple pie", "!pie") is None


def test_parse_filter_unescapes():
    assert parse_filter(r"a\ b c\;d") == ["a b", "c;d"]


@pytest.mark.parametrize("value, spec, expected", [
    ([1, 2, 3], "0", 1),
    ([1, 2, 3], "-1", 3),
    ([1, 2, 3], "5", None),
    ([], "0", None),
    ("solo", "0", "solo"),
    ("solo", "1", None),
    ([1, 2], "x", None),
])
def test_index(value, spec, expected):
    assert apply_index(value, spec) == expected


# --------------------------
# text transforms and registry
# --------------------------

def test_text_transforms():
    assert TEXT_TRANSFORMS["upper"]("abc") == "ABC"
    assert TEXT_TRANSFORMS["lower"]("ABC") == "abc"
    assert TEXT_TRANSFORMS["reverse"]("abc") == "cba"
    assert TEXT_TRANSFORMS["base64"]("hello") == "aGVsbG8="
    assert TEXT_TRANSFORMS["base64decode"]("aGVsbG8=") == "hello"
    assert TEXT_TRANSFORMS["md5"]("abc") == "900150983cd24fb0d6963f7d28e17f72"
    assert TEXT_TRANSFORMS["sha256"]("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad")


def test_base64decode_invalid_is_absent():
    assert TEXT_TRANSFORMS["base64decode"]("***") is None


def test_registry_decorator_and_parent_fallback():
    parent = TransformRegistry({"twice": lambda v: v * 2})
    child = TransformRegistry(parent=parent)

    @child.register("shout")
    def shout(value):
        return f"{value}!"

    assert child.get("shout") is shout
    assert child.get("twice")("ab") == "abab"
    assert "twice" in child
    assert child.names() == ["shout", "twice"]
    child.unregister("shout")
    assert child.get("shout") is None


def test_apply_transform_uses_context_registry():
    registry = TransformRegistry({"shout": lambda v: f"{v}!"})
    assert apply_transform("hi", "shout", _ctx(registry=registry)) == "hi!"


def test_unknown_transform_warns_and_passes_through():
    ctx = _ctx()
    assert apply_transform("hi", "nope", ctx) == "hi"
    assert ctx.warnings == ["Unknown transform: nope"]


# --------------------------
# pipeline
# --------------------------

def test_pipeline_stage_order_is_fixed():
    ctx = _ctx()
    transforms = {"index": ["0"], "transform": ["upper"]}
    assert apply_pipeline(["a", "b"], transforms, ctx) == "A"


def test_pipeline_transform_drops_invalid_list_items():
    ctx = _ctx()
    out = apply_pipeline(["a1", "b", "c2"], {"transform": [r"regexp:/\d/"]}, ctx)
    assert out == ["1", "2"]


def test_pipeline_save_without_keep_discards():
    ctx = _ctx()
    out = apply_pipeline("v", {"save": ["x"]}, ctx)
    assert out == DiscardMarker("v")
    assert ctx.variables["x"] == "v"


def test_pipeline_save_with_keep_returns_value():
    ctx = _ctx()
    out = apply_pipeline("v", {"save": ["x", "y"], "keep": [""]}, ctx)
    assert out == "v"
    assert ctx.variables["x"] == "v" and ctx.variables["y"] == "v"


def test_pipeline_absent_value_is_not_saved():
    ctx = _ctx()
    out = apply_pipeline("abc", {"transform": [r"regexp:/\d/"], "save": ["x"]}, ctx)
    assert out is None
    assert "x" not in ctx.variables


@pytest.mark.parametrize("pair", [
    ["reverse", "reverse"],
    ["base64", "base64decode"],
])
@pytest.mark.parametrize("text", ["héllo", "naïve café ✓", "日本語テキスト"])
def test_pipeline_round_trips_non_ascii_text(pair, text):
    assert apply_pipeline(text, {"transform": pair}, _ctx()) == text
