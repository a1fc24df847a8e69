import pytest

from webq.webq_datatypes import QueryFormatError, Scheme, UnsupportedSchemeError
from webq.webq_parser import (
    is_complete_regexp,
    parse_chain,
    parse_query,
    parse_segment,
    split_array_pipes,
    split_keep,
    split_params,
    split_regexps,
    split_transforms,
    tokenize,
)


def test_split_keep_keeps_operators():
    assert split_keep("a||b++c") == ["a", "||", "b", "++", "c"]
    assert split_keep("") == []


def test_tokenize_prefers_array_pipe_over_pipe():
    assert tokenize("a || b ++ c >> d >>> e") == ["a", "||", "b", "++", "c", ">>", "d", ">>>", "e"]


def test_tokenize_drops_blank_tokens():
    assert tokenize("  h1   ||   ") == ["h1", "||"]


def test_parse_chain_folds_operator_flags():
    chain = parse_chain("h1 || h2 ++ h3 >> json:x")
    flags = [(s.path, s.required, s.is_pipe) for s in chain]
    assert flags == [
        ("h1", True, False),
        ("h2", False, False),
        ("h3", True, False),
        ("x", True, True),
    ]
    assert chain.segments[-1].scheme is Scheme.JSON


def test_pipe_flag_only_applies_to_next_segment():
    chain = parse_chain("a >> b ++ c")
    assert [s.is_pipe for s in chain] == [False, True, False]


def test_split_array_pipes_and_query_stages():
    assert split_array_pipes("a >>> b >>> c") == ["a ", " b ", " c"]
    query = parse_query("json:items >>> json:0 >>> template:x")
    assert len(query.stages) == 3
    assert [s.scheme for s in query.segments()] == [Scheme.JSON, Scheme.JSON, Scheme.TEMPLATE]


def test_parse_segment_defaults_to_html():
    seg = parse_segment("div.title")
    assert seg.scheme is Scheme.HTML
    assert seg.path == "div.title"
    assert seg.parameters == {}
    assert seg.transforms == {}


def test_parse_segment_save_and_keep():
    seg = parse_segment("json:items/0?save=x&keep")
    assert seg.scheme is Scheme.JSON
    assert seg.path == "items/0"
    assert seg.transforms == {"save": ("x",), "keep": ("",)}
    assert seg.saves == ["x"]
    assert seg.keeps is True
    assert seg.discards is False


def test_save_without_keep_discards():
    seg = parse_segment("json:a?save=x")
    assert seg.discards is True
    assert parse_segment("json:a?save=x&keep=false").discards is True


def test_regexp_shorthand_is_not_split_inside_body():
    seg = parse_segment("html:p?regexp=/a&b/x/&save=y")
    assert seg.transforms["transform"] == ("regexp:/a&b/x/",)
    assert seg.transforms["save"] == ("y",)


def test_regexp_shorthand_is_appended_after_transforms():
    seg = parse_segment("html:p?regexp=/x/&transform=upper")
    assert seg.transforms["transform"] == ("upper", "regexp:/x/")


def test_regexp_shorthand_keeps_semicolons_inside_body():
    seg = parse_segment("template:a;b?regexp=/;/-/")
    assert seg.transforms["transform"] == ("regexp:/;/-/",)
    seg = parse_segment("html:p?regexp=/a;b/c/;/x/")
    assert seg.transforms["transform"] == ("regexp:/a;b/c/", "regexp:/x/")
    assert split_regexps("/;/-/") == ["/;/-/"]


def test_segment_tables_are_read_only():
    seg = parse_segment("json:a?save=x&page=2")
    with pytest.raises(TypeError):
        seg.transforms["save"] = ("y",)
    with pytest.raises(TypeError):
        seg.parameters["page"] = ("3",)
    assert isinstance(seg.transforms["save"], tuple)


def test_transform_list_keeps_regexp_semicolons():
    seg = parse_segment("html:p?transform=upper;regexp:/a;b/c/;lower")
    assert seg.transforms["transform"] == ("upper", "regexp:/a;b/c/", "lower")


def test_split_transforms_and_complete_regexp():
    assert split_transforms("json;upper") == ["json", "upper"]
    assert is_complete_regexp("regexp:/a/")
    assert is_complete_regexp("regexp:/a/b/")
    assert not is_complete_regexp("regexp:/a")
    assert is_complete_regexp("upper")


def test_split_params_ignores_escaped_ampersand():
    assert split_params(r"filter=a\&b&save=x") == [("filter", r"a\&b"), ("save", "x")]


def test_split_params_ampersand_needs_param_shape():
    assert split_params("filter=a & b&keep") == [("filter", "a & b"), ("keep", "")]


def test_other_parameters_stay_in_parameters():
    seg = parse_segment("url:?page=3&_remove=q")
    assert seg.scheme is Scheme.URL
    assert seg.path == ""
    assert seg.parameters == {"page": ("3",), "_remove": ("q",)}


def test_url_and_template_paths_drop_leading_slash():
    assert parse_segment("url:/host").path == "host"
    assert parse_segment("template:/x").path == "x"


def test_question_mark_inside_placeholder_is_not_params():
    seg = parse_segment("template:${a}b?save=c")
    assert seg.path == "${a}b"
    assert seg.saves == ["c"]


def test_stray_question_mark_is_a_format_error():
    with pytest.raises(QueryFormatError) as exc:
        parse_segment("json:a?save=x?keep")
    assert 'Use "&" to separate parameters' in str(exc.value)


def test_unknown_scheme_raises():
    with pytest.raises(UnsupportedSchemeError) as exc:
        parse_query("xpath://div")
    assert exc.value.scheme == "xpath"
    assert isinstance(exc.value, ValueError)


def test_css_pseudo_class_is_not_a_scheme():
    seg = parse_segment("li:first-child")
    assert seg.scheme is Scheme.HTML
    assert seg.path == "li:first-child"


def test_query_reports_transform_use():
    assert parse_query("json:x ++ html:p?transform=jseval:a").uses_transform("jseval")
    assert not parse_query("json:x?transform=json").uses_transform("jseval")
