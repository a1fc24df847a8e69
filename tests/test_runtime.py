from webq.webq_datatypes import PageData
from webq.webq_runtime import ExecutionResult, QueryRunner

PAGE = PageData("https://example.com/p", "<html><body><h1>Hi</h1></body></html>", json_data={"n": 2})


def test_handle_query_success():
    runner = QueryRunner()
    res = runner.handle_query("json:n?save=x&keep ++ h1@text", PAGE)
    assert res.status == 'success', res.error_message
    assert res.value == [2, "Hi"]
    assert res.variables["x"] == 2
    assert res.variables["pageUrl"] == "https://example.com/p"


def test_handle_query_with_variables():
    runner = QueryRunner()
    res = runner.handle_query("template:${greeting}, ${n + 1}", PAGE, variables={"greeting": "hey", "n": "4"})
    assert res.status == 'success', res.error_message
    assert res.value == "hey, 5"


def test_compiled_queries_are_cached():
    runner = QueryRunner()
    assert runner.compile("json:n") is runner.compile("json:n")


def test_compile_cache_is_bounded():
    runner = QueryRunner(cache_size=2)
    first = runner.compile("json:a")
    runner.compile("json:b")
    runner.compile("json:c")
    assert runner.compile.cache_info().currsize == 2
    assert runner.compile("json:a") is not first


def test_unsupported_scheme_error_result():
    runner = QueryRunner()
    res = runner.handle_query("h1 ++ ftp:files", PAGE)
    assert res.status == 'error'
    assert res.error_message == "UnsupportedScheme: ftp"
    assert res.position == 6
    assert res.format_error() == "UnsupportedScheme: ftp\n  h1 ++ ftp:files\n        ^"


def test_format_error_result():
    runner = QueryRunner()
    res = runner.handle_query("json:a?save=x?keep", PAGE)
    assert res.status == 'error'
    assert res.error_message.startswith('QueryFormatError: Multiple "?"')
    assert res.position == 0


def test_format_error_without_position():
    res = ExecutionResult(status='error', error_message="boom")
    assert res.format_error() == "boom"
    assert ExecutionResult(status='success', value=1).format_error() == ""


def test_check_delegates_to_validator():
    assert not QueryRunner().check("jsn:a").is_valid
