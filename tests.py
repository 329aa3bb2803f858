import logging

import pytest

from minilisp import (
    LPAREN, NUMBER, RPAREN, SYMBOL,
    ArityError, EmptyInput, EmptyList, Environment, EvalError, EvalTypeError, IntegerOverflow, LexError,
    Lisp, LispError, NestingTooDeep, NotCallable, Operator, ParseError, Symbol, Token, TrailingInput,
    UnbalancedParens, UndefinedSymbol, UnexpectedCloseParen, UnknownOperator,
    evaluate, main, parse, read, render, repl, tokenize,
)


def e(source, lisp=None):
    """Shortcut for evaluating lines of source in one session. Return the last rendered result."""
    lisp = lisp or Lisp()
    result = None
    for line in source.strip().splitlines():
        if line.strip():
            result = lisp.interpret(line)
    return result


def p(source):
    """Shortcut for parsing a single expression in tests."""
    return read(source)


def feed(monkeypatch, *lines):
    """Make input() return the given lines, then signal end of input."""
    lines = iter(lines)

    def fake_input(prompt=''):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr('builtins.input', fake_input)


def test_tokenizer():
    source = '(+ 12 (car x))'
    tokens = [
        Token(LPAREN, '('), Token(SYMBOL, '+'), Token(NUMBER, 12),
        Token(LPAREN, '('), Token(SYMBOL, 'car'), Token(SYMBOL, 'x'), Token(RPAREN, ')'),
        Token(RPAREN, ')'),
    ]
    assert tokenize(source) == tokens


def test_tokenizer_whitespace():
    assert tokenize('') == []
    assert tokenize(' \t\n ') == []
    assert tokenize('(a\tb\n)') == tokenize('( a b )')


@pytest.mark.parametrize('source,token', [
    ('-3', Token(NUMBER, -3)),
    ('+7', Token(NUMBER, 7)),
    ('007', Token(NUMBER, 7)),
    ('-', Token(SYMBOL, '-')),
    ('+', Token(SYMBOL, '+')),
    ('-x', Token(SYMBOL, '-x')),
    ('1+', Token(SYMBOL, '1+')),
    ('12abc', Token(SYMBOL, '12abc')),
    ('set!', Token(SYMBOL, 'set!')),
    ('"x"', Token(SYMBOL, '"x"')),
    ("'a", Token(SYMBOL, "'a")),
    ('a,b;c', Token(SYMBOL, 'a,b;c')),
    ('été', Token(SYMBOL, 'été')),
])
def test_tokenizer_numbers_and_symbols(source, token):
    assert tokenize(source) == [token]


def test_tokenizer_minus_operator_and_negative_literal():
    assert tokenize('(- 5 -3)') == [
        Token(LPAREN, '('), Token(SYMBOL, '-'), Token(NUMBER, 5), Token(NUMBER, -3), Token(RPAREN, ')'),
    ]


@pytest.mark.parametrize('source,column', [
    ('\x00', 0),
    ('(a\x07b)', 2),
    ('(+ 1 \x1b)', 5),
    ('(list \x7f)', 6),
])
def test_tokenizer_rejects_control_characters(source, column):
    with pytest.raises(LexError) as excinfo:
        tokenize(source)
    assert excinfo.value.column == column


def test_tokenizer_rejects_out_of_range_literals():
    assert tokenize('9223372036854775807') == [Token(NUMBER, 2 ** 63 - 1)]
    assert tokenize('-9223372036854775808') == [Token(NUMBER, -2 ** 63)]
    with pytest.raises(LexError):
        tokenize('9223372036854775808')


def test_parser():
    assert p('b') == 'b'
    assert isinstance(p('b'), Symbol)
    assert p('42') == 42
    assert p('()') == []
    assert p('(c)') == ['c']
    assert p('(c 1)') == ['c', 1]
    assert p('((e) f)') == [['e'], 'f']
    assert p('(g (h) ())') == ['g', ['h'], []]
    assert p('  (+ 1\t2)  ') == ['+', 1, 2]


@pytest.mark.parametrize('source,error', [
    ('', EmptyInput),
    ('   ', EmptyInput),
    ('(+ 1 2', UnbalancedParens),
    ('((', UnbalancedParens),
    (')', UnexpectedCloseParen),
    ('(+ 1 2))', UnexpectedCloseParen),
    ('1 2', TrailingInput),
    ('(g) (h)', TrailingInput),
])
def test_parser_errors(source, error):
    with pytest.raises(error):
        p(source)


def test_parser_error_hierarchy():
    assert issubclass(UnexpectedCloseParen, UnbalancedParens)
    for error in (UnbalancedParens, TrailingInput, EmptyInput, NestingTooDeep):
        assert issubclass(error, ParseError)
    assert issubclass(ParseError, LispError)
    assert issubclass(LexError, LispError)
    assert issubclass(EvalError, LispError)


def test_parser_accepts_tokens():
    assert parse([Token(LPAREN, '('), Token(SYMBOL, 'list'), Token(RPAREN, ')')]) == ['list']
    with pytest.raises(EmptyInput):
        parse([])


def test_parser_nesting_limit():
    assert parse(tokenize('(((1)))'), max_depth=3) == [[[1]]]
    with pytest.raises(NestingTooDeep):
        parse(tokenize('((((1))))'), max_depth=3)
    deep = '(list ' * 200 + ')' * 200
    assert e(deep) == '(' * 200 + ')' * 200
    with pytest.raises(NestingTooDeep):
        Lisp().eval('(' * 201 + ')' * 201)


def test_environment():
    env = Environment()
    env.define('a', 1)
    assert env.lookup('a') == 1
    env.define('a', [2, 3])
    assert env.lookup('a') == [2, 3]
    assert len(env) == 1
    assert 'a' in env
    assert 'b' not in env
    with pytest.raises(UndefinedSymbol) as excinfo:
        env.lookup('b')
    assert excinfo.value.name == 'b'
    assert str(excinfo.value) == 'undefined symbol: b'


def test_environment_scopes():
    outer = Environment({'a': 1, 'b': 2})
    inner = outer.child({'a': 10})
    inner.define('c', 3)
    assert inner.lookup('a') == 10
    assert inner.lookup('b') == 2
    assert outer.lookup('a') == 1
    assert 'c' not in outer
    assert inner.names() == ['a', 'c', 'b']
    assert len(inner) == 3


def test_operator_lookup():
    assert Operator.lookup('+') is Operator.ADD
    assert Operator.lookup('cdr') is Operator.CDR
    assert Operator.lookup('lambda') is None


def test_render():
    assert render(5) == '5'
    assert render(-5) == '-5'
    assert render([]) == '()'
    assert render([1, [2, [3]], []]) == '(1 (2 (3)) ())'
    assert render(Symbol('a')) == 'a'


eval_tests = [
    '(+ 2 3) --> 5',
    '(* 4 (- 5 3)) --> 8',
    '(+ 1 2 3 4 5) --> 15',
    '(- 10 3 2) --> 5',
    '(* 2 3 4) --> 24',
    '(- 5) --> -5',
    '(- -5) --> 5',
    '(- 5 -3) --> 8',
    '(+ -2 -3) --> -5',
    '42 --> 42',
    '-7 --> -7',
    '() --> ()',
    '(list) --> ()',
    '(list 1 2 3) --> (1 2 3)',
    '(list 1 (list 2 3) (list)) --> (1 (2 3) ())',
    '(list (+ 1 1) (* 2 2)) --> (2 4)',
    '(car (list 1 2 3)) --> 1',
    '(cdr (list 1 2 3)) --> (2 3)',
    '(cdr (list 1)) --> ()',
    '(cdr (list)) --> ()',
    '(car (cdr (list 1 2 3))) --> 2',
    '(car (list (list 1 2) 3)) --> (1 2)',
    '(print 7) --> 7',
    '(print (list 1 2)) --> (1 2)',
    '(define a 5) --> a',

    """
        (define a 5)
        (print a)
        --> 5
    """,
    """
        (define x 1)
        (define x 2)
        x
        --> 2
    """,
    """
        (define l (list 1 2 3))
        (car (cdr l))
        --> 2
    """,
    """
        (define a (+ 1 2))
        (* a a)
        --> 9
    """,
    """
        (define b (define a 1))
        b
        --> a
    """,
    """
        (define + 3)
        (+ + +)
        --> 6
    """,
]


def make_params(*test_packs):
    return [pair.split('-->') for pair in sum(test_packs, [])]


@pytest.mark.parametrize('code,result', make_params(eval_tests))
def test_eval(code, result):
    assert e(code) == result.strip()


@pytest.mark.parametrize('code,error', [
    ('(car (list))', EmptyList),
    ('(car (cdr (list 1)))', EmptyList),
    ('x', UndefinedSymbol),
    ('car', UndefinedSymbol),
    ('(+ 1 x)', UndefinedSymbol),
    ('(+ 1 "x")', UndefinedSymbol),
    ('(+ (list) x)', EvalTypeError),
    ('(+ 1 (list 2))', EvalTypeError),
    ('(- (list))', EvalTypeError),
    ('(car 5)', EvalTypeError),
    ('(cdr 5)', EvalTypeError),
    ('(define 5 1)', EvalTypeError),
    ('(define (a) 1)', EvalTypeError),
    ('(1 2)', NotCallable),
    ('((list) 1)', NotCallable),
    ('(foo 1)', UnknownOperator),
    ('(lambda (x) x)', UnknownOperator),
    ('(define a)', ArityError),
    ('(define a 1 2)', ArityError),
    ('(print)', ArityError),
    ('(print 1 2)', ArityError),
    ('(car)', ArityError),
    ('(car (list 1) undefined)', ArityError),
    ('(cdr (list 1) (list 2))', ArityError),
    ('(+)', ArityError),
    ('(+ 1)', ArityError),
    ('(*)', ArityError),
    ('(* 2)', ArityError),
    ('(-)', ArityError),
    ('(+ 9223372036854775807 1)', IntegerOverflow),
    ('(- -9223372036854775807 2)', IntegerOverflow),
    ('(- -9223372036854775808)', IntegerOverflow),
    ('(* 4294967296 4294967296)', IntegerOverflow),
])
def test_eval_errors(code, error):
    with pytest.raises(error):
        Lisp().eval(code)


def test_error_messages():
    lisp = Lisp()
    with pytest.raises(UndefinedSymbol, match='undefined symbol: x'):
        lisp.eval('(+ 1 x)')
    with pytest.raises(UnknownOperator, match='unknown operator: foo'):
        lisp.eval('(foo)')
    with pytest.raises(ArityError, match='car expects 1 argument, got 2'):
        lisp.eval('(car 1 2)')
    with pytest.raises(EvalTypeError, match=r'\+ expected number, got \(\)'):
        lisp.eval('(+ 1 (list))')


def test_define_is_idempotent():
    lisp = Lisp()
    lisp.eval('(define x 1)')
    lisp.eval('(define x 1)')
    assert len(lisp.env) == 1
    assert lisp.eval('x') == 1


def test_failed_define_leaves_environment_untouched():
    lisp = Lisp()
    with pytest.raises(EmptyList):
        lisp.eval('(define a (car (list)))')
    assert 'a' not in lisp.env
    assert len(lisp.env) == 0


def test_session_survives_errors():
    lisp = Lisp()
    assert lisp.interpret('(define a 5)') == 'a'
    for bad in ['(+ 1 2', ')', '(car (list))', '"a"', '(foo)']:
        with pytest.raises(LispError):
            lisp.eval(bad)
    assert lisp.interpret('(print a)') == '5'


@pytest.mark.parametrize('items', ['1', '1 2', '1 2 3', '(list 4 5) 6', '-1 (list) 0'])
def test_car_cdr_of_list(items):
    first, rest = read('(%s)' % items)[0], read('(%s)' % items)[1:]
    lisp = Lisp()
    assert lisp.eval('(car (list %s))' % items) == lisp.eval_expr(first)
    assert lisp.eval('(cdr (list %s))' % items) == [lisp.eval_expr(expr) for expr in rest]


def test_evaluate_with_explicit_environment():
    env = Environment({'n': 4})
    assert evaluate([Symbol('*'), Symbol('n'), 2], env) == 8
    assert evaluate([Symbol('define'), Symbol('m'), [Symbol('list'), 1]], env) == 'm'
    assert env.lookup('m') == [1]
    assert Lisp(env).eval('(car m)') == 1


def test_evaluate_rejects_non_expressions():
    with pytest.raises(TypeError):
        evaluate('a', Environment({'a': 1}))
    with pytest.raises(TypeError):
        evaluate([Symbol('list'), 1.5], Environment())


def test_deeply_nested_values_render():
    lisp = Lisp()
    lisp.eval('(define a (list))')
    for _ in range(1000):
        assert lisp.interpret('(define a (list a))') == 'a'
    assert lisp.interpret('a') == '(' * 1001 + ')' * 1001
    assert lisp.interpret('(car a)') == '(' * 1000 + ')' * 1000
    assert len(lisp.env) == 1


def test_define_with_shared_structure_stays_fast(caplog):
    caplog.set_level(logging.WARNING, logger='minilisp')
    lisp = Lisp()
    lisp.eval('(define a (list 1))')
    for _ in range(60):
        assert lisp.interpret('(define a (list a a))') == 'a'
    assert lisp.interpret('(car ' * 60 + 'a' + ')' * 60) == '(1)'


def test_max_depth_is_bounded():
    assert Lisp(max_depth=1).max_depth == 1
    with pytest.raises(ValueError):
        Lisp(max_depth=0)
    with pytest.raises(ValueError):
        Lisp(max_depth=5000)


def test_define_logs_binding(caplog):
    caplog.set_level(logging.DEBUG, logger='minilisp')
    Lisp().eval('(define a (list 1 2))')
    assert 'Defined a = (1 2)' in caplog.text


def test_repl(monkeypatch, capsys):
    feed(monkeypatch, '(define a 5)', '', '(print a)', '(car (list))', '(+ a 1)')
    repl()
    out, err = capsys.readouterr()
    assert out == 'a\n5\n6\n\n'
    assert err == 'Error: car of empty list\n'


def test_repl_reports_parse_errors(monkeypatch, capsys):
    feed(monkeypatch, '(+ 1 2', ')', '(list 1 2)')
    repl(Lisp())
    out, err = capsys.readouterr()
    assert out == '(1 2)\n\n'
    assert err == 'Error: missing )\nError: unexpected )\n'


def test_repl_stops_on_interrupt(monkeypatch, capsys):
    def interrupted(prompt=''):
        raise KeyboardInterrupt

    monkeypatch.setattr('builtins.input', interrupted)
    repl()
    assert capsys.readouterr().out == '\n'


def test_main_evaluates_expressions(capsys):
    assert main(['-e', '(define a 2)', '-e', '(* a 21)']) == 0
    assert capsys.readouterr().out == 'a\n42\n'


def test_main_reports_failures(capsys):
    assert main(['-e', '(car (list))', '-e', '(+ 1 2)']) == 1
    out, err = capsys.readouterr()
    assert out == '3\n'
    assert err == 'Error: car of empty list\n'


def test_main_max_depth(capsys):
    assert main(['--max-depth', '1', '-e', '(list (list))']) == 1
    assert 'nested too deeply' in capsys.readouterr().err


@pytest.mark.parametrize('value', ['0', '5000', 'deep'])
def test_main_rejects_bad_max_depth(value, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(['--max-depth', value, '-e', '1'])
    assert excinfo.value.code == 2
    assert '--max-depth' in capsys.readouterr().err



def test_main_starts_repl(monkeypatch, capsys):
    feed(monkeypatch, '(cdr (list 1 2 3))')
    assert main([]) == 0
    assert capsys.readouterr().out == '(2 3)\n\n'
