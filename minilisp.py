import argparse
import logging
import operator as op
import re
import sys
from enum import Enum
from typing import NamedTuple


logger = logging.getLogger(__name__)

MAX_DEPTH = 200
INT_MIN, INT_MAX = -2 ** 63, 2 ** 63 - 1
CLOSE_PAREN = object()

LPAREN, RPAREN, SYMBOL, NUMBER = 'LPAREN', 'RPAREN', 'SYMBOL', 'NUMBER'

TOKEN_RE = re.compile(r"""
    (?P<space>\s+)|
    (?P<lparen>\()|
    (?P<rparen>\))|
    (?P<atom>[^\s()\x00-\x1f\x7f]+)|
    (?P<error>.)
""", re.X | re.S)
NUMBER_RE = re.compile(r"[+-]?[0-9]+")


# Errors:

class LispError(Exception):
    """Base class for every error reported for a single line of input."""


class LexError(LispError):

    def __init__(self, message, column):
        super().__init__('%s at column %d' % (message, column))
        self.column = column


class ParseError(LispError):
    pass


class UnbalancedParens(ParseError):
    pass


class UnexpectedCloseParen(UnbalancedParens):
    pass


class TrailingInput(ParseError):
    pass


class EmptyInput(ParseError):
    pass


class NestingTooDeep(ParseError):
    pass


class EvalError(LispError):
    pass


class UndefinedSymbol(EvalError):

    def __init__(self, name):
        super().__init__('undefined symbol: %s' % name)
        self.name = name


class NotCallable(EvalError):
    pass


class ArityError(EvalError):
    pass


class EvalTypeError(EvalError):
    pass


class UnknownOperator(EvalError):

    def __init__(self, name):
        super().__init__('unknown operator: %s' % name)
        self.name = name


class EmptyList(EvalError):
    pass


class IntegerOverflow(EvalError):
    pass


# Reader:

class Symbol(str):
    """An identifier. Kept apart from plain strings so it renders bare."""

    def __repr__(self):
        return 'Symbol(%s)' % str.__repr__(self)


class Token(NamedTuple):
    type: str
    value: object


def tokenize(source):
    """Tokenize a line of source into LPAREN, RPAREN, SYMBOL and NUMBER tokens."""
    tokens = []
    for match in TOKEN_RE.finditer(source):
        kind, text = match.lastgroup, match.group()
        if kind == 'error':
            raise LexError('unexpected character %r' % text, match.start())
        elif kind == 'lparen':
            tokens.append(Token(LPAREN, text))
        elif kind == 'rparen':
            tokens.append(Token(RPAREN, text))
        elif kind == 'atom':
            if NUMBER_RE.fullmatch(text):
                value = int(text)
                if not INT_MIN <= value <= INT_MAX:
                    raise LexError('integer literal %s out of range' % text, match.start())
                tokens.append(Token(NUMBER, value))
            else:
                tokens.append(Token(SYMBOL, text))
    return tokens


def parse_expr(tokens, pos, depth_left):
    """Parse a single expression starting at pos. Return it and the next position."""
    token = tokens[pos]
    if token.type == LPAREN:
        if depth_left <= 0:
            raise NestingTooDeep('expression nested too deeply')
        return parse_body(tokens, pos + 1, depth_left - 1)
    if token.type == RPAREN:
        raise UnexpectedCloseParen('unexpected )')
    if token.type == NUMBER:
        return token.value, pos + 1
    return Symbol(token.value), pos + 1  # Atom


def parse_body(tokens, pos, depth_left):
    """Parse list elements up to the matching ')'. Return the list and the position after it."""
    body = []
    while pos < len(tokens):
        if tokens[pos].type == RPAREN:
            return body, pos + 1
        expr, pos = parse_expr(tokens, pos, depth_left)
        body.append(expr)
    raise UnbalancedParens('missing )')


def parse(tokens, max_depth=MAX_DEPTH):
    """Parse a line of tokens into exactly one expression."""
    if not tokens:
        raise EmptyInput('empty input')
    expr, pos = parse_expr(tokens, 0, max_depth)
    if pos < len(tokens):
        if tokens[pos].type == RPAREN:
            raise UnexpectedCloseParen('unexpected )')
        raise TrailingInput('trailing input after complete expression: %s' % tokens[pos].value)
    return expr


def read(source, max_depth=MAX_DEPTH):
    return parse(tokenize(source), max_depth)


def render(value):
    """Return the printed representation of a value.

    Walks the value with an explicit stack, so deeply nested lists
    render without recursion.

    >>> render([1, [Symbol('a'), -2], []])
    '(1 (a -2) ())'

    """
    parts, stack = [], [value]
    while stack:
        item = stack.pop()
        if item is CLOSE_PAREN:
            parts.append(')')
            continue
        if parts and parts[-1] != '(':
            parts.append(' ')
        if isinstance(item, list):
            parts.append('(')
            stack.append(CLOSE_PAREN)
            stack.extend(reversed(item))
        else:
            parts.append(str(item))
    return ''.join(parts)



def is_number(value):
    return isinstance(value, int) and not isinstance(value, bool)


# Environment:

class Environment:
    """A scope of bindings from symbol names to values.

    Scopes chain through `parent`: lookups walk outward, definitions always
    land in the innermost scope. The interpreter itself runs in one global
    scope; `child` exists for nested scopes.

    """

    def __init__(self, bindings=None, parent=None):
        self.bindings = dict(bindings or {})
        self.parent = parent

    def define(self, name, value):
        self.bindings[str(name)] = value

    def lookup(self, name):
        env = self
        while env is not None:
            if name in env.bindings:
                return env.bindings[name]
            env = env.parent
        raise UndefinedSymbol(name)

    def child(self, bindings=None):
        return Environment(bindings, self)

    def names(self):
        """Every visible name, innermost scope first, each listed once."""
        names, env = [], self
        while env is not None:
            names.extend(name for name in env.bindings if name not in names)
            env = env.parent
        return names

    def __contains__(self, name):
        try:
            self.lookup(name)
        except UndefinedSymbol:
            return False
        return True

    def __len__(self):
        return len(self.names())

    def __repr__(self):
        return 'Environment(%r, parent=%r)' % (self.bindings, self.parent)


# Evaluator:

class Operator(Enum):
    ADD = '+'
    SUB = '-'
    MUL = '*'
    DEFINE = 'define'
    PRINT = 'print'
    CAR = 'car'
    CDR = 'cdr'
    LIST = 'list'

    @classmethod
    def lookup(cls, name):
        """Return the operator called `name`, or None if there is none."""
        try:
            return cls(name)
        except ValueError:
            return None


def check_range(value, operator):
    if not INT_MIN <= value <= INT_MAX:
        raise IntegerOverflow('integer overflow in %s' % operator.value)
    return value


def plural(count):
    return '%d argument%s' % (count, '' if count == 1 else 's')


class Lisp:
    """The interpreter session, bound to the environment you pass.

    Bindings made by `define` persist in the environment across calls.

    >>> lisp = Lisp()
    >>> lisp.interpret('(define a 5)')
    'a'
    >>> lisp.eval('(* a (- 5 3))')
    10
    >>> lisp.interpret('(cdr (list 1 2 3))')
    '(2 3)'

    """

    def __init__(self, env=None, max_depth=MAX_DEPTH):
        if not 1 <= max_depth <= MAX_DEPTH:
            raise ValueError('max_depth must be between 1 and %d, got %r' % (MAX_DEPTH, max_depth))
        self.env = Environment() if env is None else env
        self.max_depth = max_depth

    def eval(self, source):
        """Read and evaluate one line of source."""
        expr = read(source, self.max_depth)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('Evaluating %s', render(expr))
        return self.eval_expr(expr)

    def interpret(self, source):
        """Evaluate one line of source and return the printed result."""
        return render(self.eval(source))

    def eval_expr(self, expr):
        """Evaluate a single expression."""
        if isinstance(expr, Symbol):
            return self.env.lookup(expr)
        if is_number(expr):
            return expr
        if not isinstance(expr, list):
            raise TypeError('not an expression: %r' % (expr,))
        if not expr:
            return []
        name, *args = expr
        if not isinstance(name, Symbol):
            raise NotCallable('%s is not callable' % render(name))
        operator = Operator.lookup(name)
        if operator is None:
            raise UnknownOperator(name)
        builtin_func = getattr(self, operator.name.lower())
        return builtin_func(*args)

    def check_arity(self, operator, args, exactly=None, at_least=None):
        if exactly is not None and len(args) != exactly:
            raise ArityError('%s expects %s, got %d' % (operator.value, plural(exactly), len(args)))
        if at_least is not None and len(args) < at_least:
            raise ArityError('%s expects at least %s, got %d' % (operator.value, plural(at_least), len(args)))

    def number(self, operator, expr):
        value = self.eval_expr(expr)
        if not is_number(value):
            raise EvalTypeError('%s expected number, got %s' % (operator.value, render(value)))
        return value

    def sequence(self, operator, expr):
        value = self.eval_expr(expr)
        if not isinstance(value, list):
            raise EvalTypeError('%s expected list, got %s' % (operator.value, render(value)))
        return value

    def fold(self, operator, func, args):
        """Evaluate numeric arguments left to right, folding them with func."""
        self.check_arity(operator, args, at_least=2)
        result = self.number(operator, args[0])
        for arg in args[1:]:
            result = check_range(func(result, self.number(operator, arg)), operator)
        return result

    # Builtin forms. Each receives its arguments unevaluated.

    def define(self, *args):
        self.check_arity(Operator.DEFINE, args, exactly=2)
        name, expr = args
        if not isinstance(name, Symbol):
            raise EvalTypeError('define expected symbol, got %s' % render(name))
        value = self.eval_expr(expr)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('Defined %s = %s', name, render(value))
        self.env.define(name, value)
        return name

    def print(self, *args):
        self.check_arity(Operator.PRINT, args, exactly=1)
        return self.eval_expr(args[0])

    def add(self, *args):
        return self.fold(Operator.ADD, op.add, args)

    def sub(self, *args):
        self.check_arity(Operator.SUB, args, at_least=1)
        if len(args) == 1:
            return check_range(-self.number(Operator.SUB, args[0]), Operator.SUB)
        return self.fold(Operator.SUB, op.sub, args)

    def mul(self, *args):
        return self.fold(Operator.MUL, op.mul, args)

    def list(self, *args):
        return [self.eval_expr(arg) for arg in args]

    def car(self, *args):
        self.check_arity(Operator.CAR, args, exactly=1)
        value = self.sequence(Operator.CAR, args[0])
        if not value:
            raise EmptyList('car of empty list')
        return value[0]

    def cdr(self, *args):
        self.check_arity(Operator.CDR, args, exactly=1)
        return self.sequence(Operator.CDR, args[0])[1:]


def evaluate(expr, env):
    """Evaluate a parsed expression against env."""
    return Lisp(env).eval_expr(expr)


# Shell:

def repl(lisp=None, prompt='> '):
    """Read lines until end of input, printing each result or error."""
    if lisp is None:
        lisp = Lisp()
    try:
        while True:
            try:
                line = input(prompt)
            except EOFError:
                break
            if not line.strip():
                continue
            try:
                print(lisp.interpret(line))
            except LispError as error:
                logger.debug('Rejected %r: %s', line, error)
                print('Error: %s' % error, file=sys.stderr)
    except KeyboardInterrupt:
        pass
    print()


def depth(text):
    value = int(text)
    if not 1 <= value <= MAX_DEPTH:
        raise argparse.ArgumentTypeError('must be between 1 and %d' % MAX_DEPTH)
    return value


def main(argv=None):
    parser = argparse.ArgumentParser(prog='minilisp', description='A minimal Lisp read-eval-print loop.')
    parser.add_argument('-e', '--eval', dest='expressions', action='append', default=[], metavar='EXPR',
                        help='evaluate EXPR and print the result instead of starting the REPL (repeatable)')
    parser.add_argument('--max-depth', type=depth, default=MAX_DEPTH, metavar='N',
                        help='maximum parenthesis nesting depth, 1 to %d (default: %%(default)s)' % MAX_DEPTH)
    parser.add_argument('--log-level', default='WARNING', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='logging level (default: %(default)s)')
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format='%(levelname)s %(name)s: %(message)s')
    lisp = Lisp(max_depth=args.max_depth)
    if not args.expressions:
        repl(lisp)
        return 0

    status = 0
    for source in args.expressions:
        try:
            print(lisp.interpret(source))
        except LispError as error:
            print('Error: %s' % error, file=sys.stderr)
            status = 1
    return status


if __name__ == '__main__':
    sys.exit(main())
