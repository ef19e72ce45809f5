import pytest

from h6.bytecode import Num, Op, OpType, Unresolved
from h6.lexer import lex
from h6.parser import Expr, ParseError, parse


def push(n):
    return Op(OpType.PUSH, Num.from_int(n))


def vals(text):
    return [e.val for e in parse(lex(text))]


def test_numbers_and_operator():
    assert vals("1 2 +") == [(push(1),), (push(2),), (Op(OpType.ADD),)]


def test_comma_is_reach_one():
    assert vals(",") == [(Op(OpType.REACH, 1),)]


def test_simple_op_symbols():
    assert vals(". ; ! ? $ @0 @+ @* @< _") == [
        (Op(OpType.DUP),),
        (Op(OpType.POP),),
        (Op(OpType.EXEC),),
        (Op(OpType.SELECT),),
        (Op(OpType.SWAP),),
        (Op(OpType.ARR_FIRST),),
        (Op(OpType.ARR_CAT),),
        (Op(OpType.ARR_LEN),),
        (Op(OpType.ARR_SKIP1),),
        (Op(OpType.PACK),),
    ]


def test_binding():
    exprs = parse(lex("a: 1"))
    assert len(exprs) == 1
    assert exprs[0].binding == "a"
    assert exprs[0].val == (push(1),)


def test_identifier_is_unresolved():
    assert vals("foo") == [(Unresolved("foo"),)]


def test_string_becomes_byte_array():
    expected = (
        (Op(OpType.ARR_BEGIN),)
        + tuple(push(b) for b in "hi".encode())
        + (Op(OpType.ARR_END),)
    )
    assert vals('"hi"') == [expected]


def test_char_literal():
    assert vals("'A") == [(push(ord("A")),)]


def test_nested_array_flattens_with_markers():
    assert vals("{ 1 { 2 } }") == [
        (
            Op(OpType.ARR_BEGIN),
            push(1),
            Op(OpType.ARR_BEGIN),
            push(2),
            Op(OpType.ARR_END),
            Op(OpType.ARR_END),
        )
    ]


def test_empty_array():
    assert vals("{}") == [(Op(OpType.ARR_BEGIN), Op(OpType.ARR_END))]


def test_binding_inside_array_loses_name():
    exprs = parse(lex("{ x: 1 }"))
    assert exprs[0].binding is None
    assert exprs[0].val == (Op(OpType.ARR_BEGIN), push(1), Op(OpType.ARR_END))


def test_syscall():
    assert vals("system 3") == [(Op(OpType.SYSTEM, 3),)]


def test_collect():
    assert vals("[!]") == [(Op(OpType.MATERIALIZE),)]


def test_planet_reaches():
    assert vals("&v-v") == [(Op(OpType.REACH, 2), Op(OpType.REACH, 1))]


def test_comments_are_skipped():
    assert vals("# lead\n1 # trail") == [(push(1),)]


def test_spans_are_increasing_and_cover_tokens():
    tokens = lex("1 a: 2 { 3 }")
    exprs = parse(tokens)
    assert exprs[0].tok_span[0] == 0
    assert exprs[-1].tok_span[1] == len(tokens)
    for prev, cur in zip(exprs, exprs[1:]):
        assert prev.tok_span[1] <= cur.tok_span[0]


def test_empty_source():
    assert parse(lex("")) == []


@pytest.mark.parametrize("text", ["}", "{ 1", "system", "[ ]", "# only a comment", "a:"])
def test_invalid_programs(text):
    with pytest.raises(ParseError):
        parse(lex(text))


def test_parse_error_reports_position():
    with pytest.raises(ParseError) as info:
        parse(lex("1 2 }"))
    assert info.value.position == 2


def test_expr_defaults():
    expr = Expr()
    assert (expr.tok_span, expr.binding, expr.val) == ((0, 0), None, ())