#!/usr/bin/env python3
"""
cellforth.py — A threaded Forth built on a flat cell machine.

No AST. Just a parameter stack, a return stack, a dictionary and an
instruction pointer walking over a flat list of cells.

Architecture:
  - Tokenizer: split a line on whitespace, drop ( comments ) and \\ comments
  - Cells: either a 32-bit number or a reference to a dictionary entry
  - Entries: a name bound to native code or to a compiled Statement
  - Engine: steps the instruction pointer over the current Statement,
    pushing numbers and dispatching word references
  - Compound words run as a nested statement over the same stacks
  - Control flow is flat: branch / ?branch read an inline relative offset
  - ':' reads the very instruction stream it runs in to compile a word

Cells:
  ('NUM',  n)      push integer n
  ('WORD', entry)  run entry.code

A line handed to exec() is loaded as source words; each one is turned into
a cell when the instruction pointer reaches it, so a line may define a word
and use it further along. Bodies compiled by ':' hold resolved cells, which
keep pointing at the entry they were compiled against even if the name is
redefined later.
"""

import argparse
import logging
import operator
import re
import sys
from collections import namedtuple

log = logging.getLogger('cellforth')
log.addHandler(logging.NullHandler())


# ── Errors ────────────────────────────────────────────────────────────────────

class ForthError(Exception):
    message = 'Forth error'

    def __init__(self, message=None):
        super().__init__(message or self.message)


class EmptyStack(ForthError):
    message = 'Stack underflow'

class WordNotFound(ForthError):
    message = 'Word not found'

class WordNameNotFound(ForthError):
    message = ': needs a name'

class UnterminatedWordDefinition(ForthError):
    message = 'Unterminated word definition'

class UnterminatedComment(ForthError):
    message = 'Unterminated comment'

class InvalidCharacter(ForthError):
    message = 'Invalid character'

class InvalidJump(ForthError):
    message = 'Invalid jump'

class ExpectedNumber(ForthError):
    message = 'Expected number'

class SemicolonOutsideOfWordDefinition(ForthError):
    message = '; outside of word definition'

class DivisionByZero(ForthError):
    message = 'Division by zero'


# ── Cells ─────────────────────────────────────────────────────────────────────

INT_BITS = 32
INT_MASK = (1 << INT_BITS) - 1
INT_MAX  = (1 << (INT_BITS - 1)) - 1
INT_MIN  = -(1 << (INT_BITS - 1))

TRUE  = -1      # all bits set
FALSE = 0

NUMBER = 'NUM'
WORD   = 'WORD'


def wrap(n: int) -> int:
    """Reduce n to a signed 32-bit cell value."""
    n &= INT_MASK
    return n - (1 << INT_BITS) if n > INT_MAX else n


def flag(cond) -> int:
    return TRUE if cond else FALSE


class Cell(namedtuple('Cell', 'kind value')):
    __slots__ = ()

    @property
    def is_number(self):
        return self.kind == NUMBER

    def __str__(self):
        return str(self.value) if self.is_number else self.value.name


def number(n: int) -> Cell:
    return Cell(NUMBER, n)


def word(entry) -> Cell:
    return Cell(WORD, entry)


_NUMBER_RE = re.compile(r'-?[0-9]+\Z')


def parse_number(token: str):
    """Return the value of a decimal literal that fits in a cell, else None."""
    if not _NUMBER_RE.match(token):
        return None
    n = int(token)
    if INT_MIN <= n <= INT_MAX:
        return n
    return None


# ── Entries ───────────────────────────────────────────────────────────────────

class Native:
    kind = 'native'

    def __init__(self, fn):
        self.fn = fn

    def run(self, vm):
        self.fn()


class Compound:
    kind = 'compound'

    def __init__(self, body):
        self.body = body

    def run(self, vm):
        vm.call(self.body)


class Entry:
    """
    A dictionary record. Entries compare and hash by name and are never
    changed once built: redefining a word inserts a new Entry.
    """
    __slots__ = ('name', 'code')

    def __init__(self, name: str, code):
        object.__setattr__(self, 'name', name)
        object.__setattr__(self, 'code', code)

    def __setattr__(self, attr, value):
        raise AttributeError(f'Entry {self.name} is read-only')

    def __eq__(self, other):
        return isinstance(other, Entry) and self.name == other.name

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return f'<Entry {self.name} ({self.code.kind})>'


# ── Dictionary ────────────────────────────────────────────────────────────────

class Dictionary:
    def __init__(self):
        self._entries = {}

    def lookup(self, name: str):
        return self._entries.get(name)

    def insert(self, entry: Entry):
        if entry.name in self._entries:
            log.debug('Redefining %s', entry.name)
        self._entries[entry.name] = entry

    def names(self) -> list:
        return list(self._entries)

    def __contains__(self, name):
        return name in self._entries

    def __len__(self):
        return len(self._entries)


# ── Statement / Tokenizer ─────────────────────────────────────────────────────

class Statement(list):
    """
    A flat, indexable run of cells. A freshly loaded line holds its source
    words instead, until the instruction pointer resolves them.
    """

    def __str__(self):
        return ' '.join(str(c) for c in self)


def tokenize(src: str) -> list:
    tokens = []
    in_comment = False
    for line in src.splitlines():
        for tok in line.split():
            if in_comment:
                in_comment = not tok.endswith(')')
            elif tok == '(':
                in_comment = True
            elif tok == '\\':
                break
            else:
                tokens.append(tok)
    if in_comment:
        raise UnterminatedComment()
    return tokens


# ── Interpreter ───────────────────────────────────────────────────────────────

class Forth:
    def __init__(self):
        self.dictionary = Dictionary()
        self.ds: list = []
        self.rs: list = []
        self.statement = Statement()
        self.statement_index = 0
        self.last_result = None
        self.out: list = []
        self._define_builtins()

    # ── I/O ───────────────────────────────────────────────────────────────────

    def _emit(self, s):
        self.out.append(str(s))

    def take_output(self) -> str:
        text = ''.join(self.out)
        self.out = []
        return text

    # ── Stack ─────────────────────────────────────────────────────────────────

    def _push(self, n):
        self.ds.append(wrap(n))

    def _pop(self):
        if not self.ds:
            raise EmptyStack()
        return self.ds.pop()

    def _peek(self):
        if not self.ds:
            raise EmptyStack()
        return self.ds[-1]

    def _need(self, n):
        if len(self.ds) < n:
            raise EmptyStack()

    # ── Parsing ───────────────────────────────────────────────────────────────

    def parse_word(self, token: str) -> Cell:
        n = parse_number(token)
        if n is not None:
            return number(n)
        entry = self.dictionary.lookup(token)
        if entry is None:
            raise WordNotFound(f'Undefined: {token}')
        return word(entry)

    def compile(self, source: str) -> Statement:
        """Resolve every word of source into a Statement of cells."""
        return Statement(self.parse_word(tok) for tok in tokenize(source))

    def load(self, source: str):
        self.statement = Statement(tokenize(source))
        self.statement_index = 0

    # ── Instruction pointer ───────────────────────────────────────────────────

    def current_token(self):
        if not 0 <= self.statement_index < len(self.statement):
            return None
        return str(self.statement[self.statement_index])

    def current(self):
        if not 0 <= self.statement_index < len(self.statement):
            return None
        cell = self.statement[self.statement_index]
        if isinstance(cell, str):
            cell = self.parse_word(cell)
        return cell

    def has_next(self) -> bool:
        return self.statement_index < len(self.statement) - 1

    def has_prev(self) -> bool:
        return self.statement_index > 0

    def advance(self):
        if not self.has_next():
            raise InvalidJump('No next cell')
        self.statement_index += 1
        self.execute(self.current())

    def retreat(self):
        if not self.has_prev():
            raise InvalidJump('No previous cell')
        self.statement_index -= 1
        self.execute(self.current())

    def jump(self, offset: int):
        target = self.statement_index + offset
        if not 0 <= target < len(self.statement):
            raise InvalidJump(f'Invalid jump offset {offset} to index {target}')
        self.statement_index = target

    def _next_token(self):
        # Step without executing; used by words that read the stream.
        if not self.has_next():
            return None
        self.statement_index += 1
        return self.current_token()

    def _branch_offset(self):
        tok = self._next_token()
        n = None if tok is None else parse_number(tok)
        if n is None:
            raise ExpectedNumber(f'Expected jump offset, got {tok}')
        return n

    # ── Execution ─────────────────────────────────────────────────────────────

    def execute(self, cell: Cell):
        if cell.is_number:
            self.ds.append(cell.value)
        else:
            cell.value.code.run(self)

    def run(self):
        if not self.statement:
            return
        self.execute(self.current())
        while self.has_next():
            self.advance()

    def call(self, body: Statement):
        saved = self.statement, self.statement_index
        self.statement, self.statement_index = body, 0
        try:
            self.run()
        finally:
            self.statement, self.statement_index = saved

    # ── Public ────────────────────────────────────────────────────────────────

    def exec(self, source: str):
        try:
            self.load(source)
            self.run()
        except ForthError as e:
            self.last_result = None
            log.debug('%r failed: %s', source, e)
            raise
        self.last_result = list(self.ds)

    def interpret(self, source: str) -> str:
        self.out = []
        try:
            self.exec(source)
            self.out.append(' ok')
        except ForthError as e:
            self.out.append(f'\n Error: {e}')
        return self.take_output()

    # ── SEE ───────────────────────────────────────────────────────────────────

    def _see(self, entry: Entry) -> str:
        if entry.code.kind == 'native':
            return f': {entry.name} <builtin> ;'
        body = str(entry.code.body)
        return f': {entry.name} {body} ;' if body else f': {entry.name} ;'

    # ── Built-ins ─────────────────────────────────────────────────────────────

    def _def(self, name, fn):
        self.dictionary.insert(Entry(name, Native(fn)))

    def _define_builtins(self):
        d = self

        # ── Definition words ─────────────────────────────────────────────────
        def w_colon():
            name = d._next_token()
            if name is None:
                raise WordNameNotFound()
            body = Statement()
            while True:
                tok = d._next_token()
                if tok is None:
                    raise UnterminatedWordDefinition(
                        f'Unterminated definition of {name}')
                if tok == ';':
                    break
                body.append(d.parse_word(tok))
            d.dictionary.insert(Entry(name, Compound(body)))
            log.debug('Defined %s as %s', name, body)
        d._def(':', w_colon)

        def w_semi():
            raise SemicolonOutsideOfWordDefinition()
        d._def(';', w_semi)

        # ── Control flow ─────────────────────────────────────────────────────
        d._def('branch', lambda: d.jump(d._branch_offset()))

        def w_qbranch():
            cond = d._pop()
            offset = d._branch_offset()
            if cond == TRUE:
                d.jump(offset)
        d._def('?branch', w_qbranch)

        # ── Arithmetic ───────────────────────────────────────────────────────
        def _div(a, b):
            if b == 0:
                raise DivisionByZero()
            q = abs(a) // abs(b)
            return q if (a < 0) == (b < 0) else -q

        def _rem(a, b):
            return a - b * _div(a, b)

        def _binop(fn):
            def op():
                d._need(2)
                b = d._pop(); a = d._pop()
                d._push(fn(a, b))
            return op

        def _unop(fn):
            return lambda: d._push(fn(d._pop()))

        d._def('+',   _binop(operator.add))
        d._def('-',   _binop(operator.sub))
        d._def('*',   _binop(operator.mul))
        d._def('/',   _binop(_div))
        d._def('mod', _binop(_rem))
        d._def('max', _binop(max))
        d._def('min', _binop(min))

        def w_divmod():
            d._need(2)
            b = d._pop(); a = d._pop()
            q = _div(a, b)
            d._push(a - b * q); d._push(q)
        d._def('/mod', w_divmod)

        # a * b is not wrapped before dividing
        def w_starslash():
            d._need(3)
            c = d._pop(); b = d._pop(); a = d._pop()
            d._push(_div(a * b, c))
        def w_starslashmod():
            d._need(3)
            c = d._pop(); b = d._pop(); a = d._pop()
            d._push(_rem(a * b, c)); d._push(_div(a * b, c))
        d._def('*/',    w_starslash)
        d._def('*/mod', w_starslashmod)

        d._def('negate', _unop(operator.neg))
        d._def('abs',    _unop(abs))
        d._def('1+', _unop(lambda x: x + 1))
        d._def('1-', _unop(lambda x: x - 1))
        d._def('2+', _unop(lambda x: x + 2))
        d._def('2-', _unop(lambda x: x - 2))
        d._def('2*', _unop(lambda x: x << 1))
        d._def('2/', _unop(lambda x: x >> 1))

        # ── Bitwise (shift counts are taken mod 32) ──────────────────────────
        d._def('and',    _binop(operator.and_))
        d._def('or',     _binop(operator.or_))
        d._def('xor',    _binop(operator.xor))
        d._def('lshift', _binop(lambda x, n: x << (n & 31)))
        d._def('rshift', _binop(lambda x, n: (x & INT_MASK) >> (n & 31)))
        d._def('not',    _unop(operator.invert))
        d._def('invert', _unop(operator.invert))

        # ── Comparison (true = -1, false = 0) ────────────────────────────────
        d._def('<',  _binop(lambda a, b: flag(a < b)))
        d._def('>',  _binop(lambda a, b: flag(a > b)))
        d._def('=',  _binop(lambda a, b: flag(a == b)))
        d._def('<>', _binop(lambda a, b: flag(a != b)))
        d._def('0<', _unop(lambda x: flag(x < 0)))
        d._def('0>', _unop(lambda x: flag(x > 0)))
        d._def('0=', _unop(lambda x: flag(x == 0)))

        # ── Stack manipulation ────────────────────────────────────────────────
        def w_qdup():
            if d._peek() != 0:
                d.ds.append(d.ds[-1])
        def w_swap():
            d._need(2); d.ds[-1], d.ds[-2] = d.ds[-2], d.ds[-1]
        def w_over():
            d._need(2); d.ds.append(d.ds[-2])
        def w_rot():
            d._need(3); d.ds.append(d.ds.pop(-3))
        def w_nip():
            d._need(2); d.ds.pop(-2)
        def w_tuck():
            d._need(2); d.ds.insert(-2, d.ds[-1])
        d._def('dup',   lambda: d.ds.append(d._peek()))
        d._def('?dup',  w_qdup)
        d._def('drop',  d._pop)
        d._def('swap',  w_swap)
        d._def('over',  w_over)
        d._def('rot',   w_rot)
        d._def('nip',   w_nip)
        d._def('tuck',  w_tuck)
        d._def('depth', lambda: d.ds.append(len(d.ds)))

        # ── Return stack ──────────────────────────────────────────────────────
        def w_fromr():
            if not d.rs:
                raise EmptyStack('Return stack underflow')
            d.ds.append(d.rs.pop())
        def w_rfetch():
            if not d.rs:
                raise EmptyStack('Return stack underflow')
            d.ds.append(d.rs[-1])
        d._def('>r', lambda: d.rs.append(d._pop()))
        d._def('r>', w_fromr)
        d._def('r@', w_rfetch)

        # ── Last result ───────────────────────────────────────────────────────
        def w_recall():
            if d.last_result is None:
                raise EmptyStack('No last result')
            d.ds.extend(d.last_result)
        d._def('$', w_recall)

        # ── Output ────────────────────────────────────────────────────────────
        def w_emit():
            if not 0 <= d._peek() <= 255:
                raise InvalidCharacter(f'Invalid character: {d.ds[-1]}')
            d._emit(chr(d._pop()))
        d._def('.',    lambda: d._emit(str(d._pop()) + ' '))
        d._def('cr',   lambda: d._emit('\n'))
        d._def('emit', w_emit)
        d._def('dump', lambda: d._emit('<' + str(len(d.ds)) + '> ' +
                                       ' '.join(str(x) for x in d.ds) + '\n'))

        # ── Introspection ─────────────────────────────────────────────────────
        def w_see():
            name = d._next_token()
            if name is None:
                raise WordNameNotFound('see needs a name')
            entry = d.dictionary.lookup(name)
            if entry is None:
                raise WordNotFound(f'Undefined: {name}')
            d._emit(d._see(entry))
        d._def('see',   w_see)
        d._def('words', lambda: d._emit('  '.join(d.dictionary.names())))

        # ── Misc ──────────────────────────────────────────────────────────────
        d._def('bye', lambda: sys.exit(0))

        # Checks compound dispatch at startup
        d.dictionary.insert(Entry('square', Compound(d.compile('dup *'))))


# ── Tests ─────────────────────────────────────────────────────────────────────

def run_tests(verbose=True):
    cases = [
        # Arithmetic
        ('1 2 + .',                   '3 '),
        ('10 3 - .',                  '7 '),
        ('6 7 * .',                   '42 '),
        ('20 4 / .',                  '5 '),
        ('-7 2 / .',                  '-3 '),   # truncates toward zero
        ('17 5 mod .',                '2 '),
        ('-7 2 mod .',                '-1 '),
        ('17 5 /mod . .',             '3 2 '),
        ('10 negate .',               '-10 '),
        ('-7 abs .',                  '7 '),
        ('3 5 max .',                 '5 '),
        ('3 5 min .',                 '3 '),
        ('5 1+ .',                    '6 '),
        ('5 1- .',                    '4 '),
        ('5 2+ .',                    '7 '),
        ('5 2- .',                    '3 '),
        ('5 2* .',                    '10 '),
        ('-7 2/ .',                   '-4 '),   # arithmetic shift
        ('2147483647 2 3 */ .',       '1431655764 '),
        ('2147483647 2 3 */mod . .',  '1431655764 2 '),
        ('2147483647 1+ .',           '-2147483648 '),

        # Bitwise
        ('12 10 and .',               '8 '),
        ('12 10 or .',                '14 '),
        ('12 10 xor .',               '6 '),
        ('0 not .',                   '-1 '),
        ('1 4 lshift .',              '16 '),
        ('-1 28 rshift .',            '15 '),

        # Comparison
        ('3 3 = .',                   '-1 '),
        ('3 4 = .',                   '0 '),
        ('3 4 < .',                   '-1 '),
        ('4 3 > .',                   '-1 '),
        ('0 0= .',                    '-1 '),
        ('-1 0< .',                   '-1 '),
        ('1 0> .',                    '-1 '),

        # Stack ops
        ('3 dup . .',                 '3 3 '),
        ('3 4 swap . .',              '3 4 '),
        ('1 2 over . . .',            '1 2 1 '),
        ('1 2 3 rot . . .',           '1 3 2 '),
        ('0 ?dup depth .',            '1 '),
        ('5 ?dup depth .',            '2 '),
        ('7 >r 1 r> + .',             '8 '),

        # Output
        ('65 emit',                   'A'),
        ('1 2 3 dump',                '<3> 1 2 3'),

        # Comments
        ('1 ( a comment ) 2 + .',     '3 '),
        ('1 2 + . \\ the rest is ignored', '3 '),

        # User-defined words
        ('5 square .',                '25 '),
        (': double 2 * ; 6 double .', '12 '),
        (': cube dup dup * * ; 3 cube .', '27 '),

        # Flat control flow
        ('1 2 branch 1 .',            ''),
        ('1 2 branch 0 .',            '2 '),
        ('3 dup . 1- dup 0> ?branch -7', '3 2 1 '),
        (': countdown dup . 1- dup dup 0> ?branch -7 drop ; 3 countdown',
         '3 2 1 '),

        # Errors
        ('.',                         'Error'),
        ('frobnicate',                'Error'),
        (': foo 1 2 +',               'Error'),
        ('9999 emit',                 'Error'),
        (';',                         'Error'),
        ('1 0 /',                     'Error'),
    ]

    passed = 0
    failures = []

    for src, expected in cases:
        f = Forth()
        result = f.interpret(src)
        r = result.rstrip()
        if r.endswith(' ok'):
            r = r[:-3].rstrip()

        if expected == 'Error':
            ok = 'Error' in result
        else:
            ok = r == expected.rstrip()
        if ok:
            passed += 1
        else:
            failures.append((src[:60], repr(expected), repr(r)))

    if verbose:
        print(f'Tests: {passed}/{len(cases)} passed')
        for src, exp, got in failures:
            print(f'  FAIL: {src}')
            print(f'    exp: {exp}')
            print(f'    got: {got}')
    return passed, len(cases)


# ── Interactive REPL ──────────────────────────────────────────────────────────

def repl(f=None, prompt='ok> '):
    f = f or Forth()
    print('cellforth: type bye to exit, words to list vocabulary')
    while True:
        try:
            line = input(prompt)
            if not line.strip():
                continue
            print(f.interpret(line))
        except EOFError:
            break
        except KeyboardInterrupt:
            print('\nInterrupted, stack and definitions preserved')


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='cellforth',
        description='A small threaded Forth on a flat cell machine.',
        )
    parser.add_argument(
        '--test',
        action='store_true',
        help='run the built-in self-test table and exit',
        )
    parser.add_argument(
        '-e', '--eval',
        action='append',
        metavar='LINE',
        help='run LINE instead of starting the REPL (repeatable)',
        )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='log debug messages to stderr',
        )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(name)s %(levelname)s: %(message)s',
        )

    if args.test:
        p, t = run_tests()
        return 0 if p == t else 1

    if args.eval:
        f = Forth()
        status = 0
        for line in args.eval:
            out = f.interpret(line)
            print(out)
            if not out.endswith(' ok'):
                status = 1
        return status

    repl()
    return 0


if __name__ == '__main__':
    sys.exit(main())
