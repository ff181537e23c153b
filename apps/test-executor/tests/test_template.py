from __future__ import annotations

import pytest

from test_executor.context import Context
from test_executor.errors import CompileError, UnknownReferenceError
from test_executor.ordered_map import OrderedMap
from test_executor.template.functions import LeftArrowFunction
from test_executor.template.template import Template, TemplateError, execute


class Join(LeftArrowFunction):
    def exec(self, arg):
        return "-".join(arg["items"])


class Echo(LeftArrowFunction):
    def exec(self, arg):
        return arg


class Wrap(LeftArrowFunction):
    def exec(self, arg):
        return f"{arg['prefix']}{arg['text']}{arg['suffix']}"


class Pick(LeftArrowFunction):
    def exec(self, arg):
        return arg["text"]


def test_single_parameter_keeps_native_type() -> None:
    assert execute("{{a}}", {"a": 1}) == 1
    assert execute("{{flag}}", {"flag": True}) is True


def test_mixed_text_is_concatenated() -> None:
    assert execute("id-{{a}}", {"a": 1}) == "id-1"
    assert execute("{{a}}/{{b}}", {"a": "x", "b": 2}) == "x/2"


def test_binary_add() -> None:
    # variables are concatenated, numeric literals are added
    assert execute("{{a + b}}", {"a": 1, "b": 2}) == "12"
    assert execute("{{1 + 2}}", {}) == 3
    assert execute("{{0.5 + 0.25}}", {}) == 0.75
    assert execute('{{a + "-suffix"}}', {"a": "value"}) == "value-suffix"


def test_nested_structures_are_rendered() -> None:
    data = {"name": "alice", "age": 30}
    rendered = execute(OrderedMap([("user", ["{{name}}", "{{age}}"])]), data)
    assert rendered["user"] == ["alice", 30]


def test_text_without_parameters_is_untouched() -> None:
    assert execute("plain text", {}) == "plain text"


def test_builtin_functions() -> None:
    assert execute('{{int("42")}}', {}) == 42
    assert execute("{{len(items)}}", {"items": [1, 2, 3]}) == 3
    assert execute("{{string(n)}}", {"n": 7}) == "7"


def test_undefined_variable() -> None:
    with pytest.raises(UnknownReferenceError) as info:
        execute("{{missing}}", {})
    assert 'undefined variable "missing"' in str(info.value)
    assert "failed to execute: {{missing}}" in str(info.value)


def test_unknown_nested_key() -> None:
    with pytest.raises(UnknownReferenceError) as info:
        execute("{{user.email}}", {"user": {"name": "alice"}})
    assert '".user.email" not found' in str(info.value)


def test_parse_error() -> None:
    with pytest.raises(CompileError):
        Template("{{a")


def test_left_arrow_function_as_mapping_key() -> None:
    data = {"join": Join(), "b": "y"}
    value = OrderedMap([("{{join <-}}", OrderedMap([("items", ["x", "{{b}}"])]))])
    assert execute(value, data) == "x-y"


def test_context_resolves_vars() -> None:
    ctx = Context().with_vars({"name": "alice"}).with_vars({"name": "bob", "id": 1})
    assert ctx.execute_template("{{vars.name}}") == "bob"
    assert ctx.execute_template("{{id}}") == 1


def test_context_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_EXECUTOR_TEMPLATE_VALUE", "from-env")
    assert Context().execute_template("{{env.TEST_EXECUTOR_TEMPLATE_VALUE}}") == "from-env"


def test_adjacent_parameters_are_concatenated() -> None:
    assert execute("{{a}}{{b}}", {"a": 1, "b": 2}) == "12"
    assert execute("{{a}}{{b}}", {"a": True, "b": 1.5}) == "true1.5"


def test_empty_parameter() -> None:
    assert execute("{{}}", {}) == ""
    assert execute("a{{}}b", {}) == "ab"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("{{7 - 10}}", -3),
        ("{{n * 3}}", 15),
        ("{{-7 / 2}}", -3),
        ("{{-7 % 3}}", -1),
        ("{{7.0 / 2}}", 3.5),
        ("{{(1 + 2) * 3}}", 9),
        ("{{1 + 2 * 3}}", 7),
        ("{{-n}}", -5),
        ("{{n - 1 - 1}}", 3),
    ],
)
def test_arithmetic(text: str, expected: object) -> None:
    assert execute(text, {"n": 5}) == expected


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("{{n > 1}}", True),
        ("{{n <= 4}}", False),
        ("{{n >= 5 && n < 6}}", True),
        ('{{name == "alice"}}', True),
        ('{{name != "alice"}}', False),
        ('{{"a" < "b"}}', True),
        ("{{1 == true}}", False),
        ("{{flag == true}}", True),
        ("{{!flag}}", False),
        ("{{false || !flag}}", False),
    ],
)
def test_comparison_and_logic(text: str, expected: bool) -> None:
    assert execute(text, {"n": 5, "name": "alice", "flag": True}) is expected


def test_logic_short_circuits() -> None:
    assert execute("{{false && missing}}", {}) is False
    assert execute("{{true || missing}}", {}) is True
    with pytest.raises(UnknownReferenceError):
        execute("{{true && missing}}", {})


def test_conditional() -> None:
    text = '{{n == 0 ? "zero" : n == 1 ? "one" : "many"}}'
    assert execute(text, {"n": 0}) == "zero"
    assert execute(text, {"n": 1}) == "one"
    assert execute(text, {"n": 7}) == "many"
    assert execute("{{n > 1 ? n * 2 : n}}", {"n": 3}) == 6


def test_coalescing() -> None:
    assert execute('{{missing ?? "default"}}', {}) == "default"
    assert execute('{{user.email ?? "none"}}', {"user": {"name": "alice"}}) == "none"
    assert execute("{{a ?? 1}}", {"a": None}) == 1
    assert execute("{{a ?? 1}}", {"a": 0}) == 0
    assert execute("{{a ?? b ?? 3}}", {}) == 3


def test_defined() -> None:
    data = {"vars": {"token": "abc"}}
    assert execute("{{defined(vars.token)}}", data) is True
    assert execute("{{defined(vars.missing)}}", data) is False
    assert execute("{{defined(nothing)}}", data) is False
    assert execute("{{!defined(vars.missing) && vars.token == \"abc\"}}", data) is True


def test_keywords_are_plain_keys_after_a_period() -> None:
    data = {"flags": {"true": 1, "defined": 2}}
    assert execute("{{flags.true}}", data) == 1
    assert execute("{{flags.defined}}", data) == 2


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ('{{1 - "x"}}', "invalid operation: int(1) - string(x) not defined"),
        ("{{n / 0}}", "invalid operation: division by zero"),
        ("{{n % 0}}", "invalid operation: division by zero"),
        ('{{n < "b"}}', "invalid operation: int(5) < string(b) not defined"),
        ("{{n && true}}", "invalid operation: operator && not defined on int(5)"),
        ("{{n ? 1 : 2}}", "invalid operation: operator ? not defined on int(5)"),
        ('{{-"x"}}', "invalid operation: operator - not defined on string(x)"),
    ],
)
def test_invalid_operations(text: str, message: str) -> None:
    with pytest.raises(TemplateError) as info:
        execute(text, {"n": 5})
    assert message in str(info.value)


@pytest.mark.parametrize("text", ["{{)}}", "{{a +}}", "{{01}}", "{{a ? b}}", "{{(a}}"])
def test_syntax_errors(text: str) -> None:
    with pytest.raises(CompileError):
        Template(text)


def test_unexpected_token_is_reported() -> None:
    with pytest.raises(CompileError) as info:
        Template("{{)}}")
    assert "col 3: unexpected token ')'" in str(info.value)


def test_invalid_yaml_argument_is_a_compile_error() -> None:
    with pytest.raises(CompileError) as info:
        Template("{{echo <-}}:\n  text: 'unterminated\n")
    assert "failed to scan YAML" in str(info.value)


def test_left_arrow_argument_coercion() -> None:
    text = (
        "{{echo <-}}:\n"
        "  quoted: '{{n}}'\n"
        "  list: '{{items}}'\n"
        "  mixed: id-{{n}}\n"
        "  quotedSum: '{{1 + 2}}'\n"
        "  unquotedSum: x{{1 + 2}}\n"
        "  vars: '{{a + b}}'"
    )
    result = execute(text, {"echo": Echo(), "n": 1, "items": [1, 2], "a": 1, "b": 2})
    assert result["quoted"] == "1"
    assert result["list"] == [1, 2]
    assert result["mixed"] == "id-1"
    assert result["quotedSum"] == "12"
    assert result["unquotedSum"] == "x3"
    assert result["vars"] == "12"


def test_left_arrow_nested_in_block_scalar() -> None:
    text = (
        "{{wrap <-}}:\n"
        "  prefix: preout-\n"
        "  text: |-\n"
        "    {{wrap <-}}:\n"
        "      prefix: prein-\n"
        "      text: '{{text}}'\n"
        "      suffix: -sufin\n"
        "  suffix: -sufout"
    )
    assert execute(text, {"wrap": Wrap(), "text": "test"}) == "preout-prein-test-sufin-sufout"


def test_block_scalar_keeps_nested_result_as_text() -> None:
    text = (
        "{{pick <-}}:\n"
        "  text: |-\n"
        "    {{pick <-}}:\n"
        "      text: '{{n}}'"
    )
    assert execute(text, {"pick": Pick(), "n": 0}) == "0"
