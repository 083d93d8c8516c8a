import pytest

from cellforth import (
    DivisionByZero, EmptyStack, FALSE, INT_MAX, INT_MIN, InvalidCharacter,
    TRUE,
)


@pytest.mark.parametrize('src, stack', [
    # arithmetic
    ('1 2 +', [3]),
    ('10 3 -', [7]),
    ('6 7 *', [42]),
    ('7 2 /', [3]),
    ('-7 2 /', [-3]),
    ('7 -2 /', [-3]),
    ('-7 -2 /', [3]),
    ('7 2 mod', [1]),
    ('-7 2 mod', [-1]),
    ('7 -2 mod', [1]),
    ('17 5 /mod', [2, 3]),
    ('10 negate', [-10]),
    ('-7 abs', [7]),
    ('3 5 max', [5]),
    ('3 5 min', [3]),
    ('2147483647 2 3 */', [1431655764]),
    ('2147483647 2 3 */mod', [2, 1431655764]),
    ('-7 3 2 */', [-10]),
    # helpers
    ('5 1+', [6]),
    ('5 1-', [4]),
    ('5 2+', [7]),
    ('5 2-', [3]),
    ('5 2*', [10]),
    ('5 2/', [2]),
    ('-7 2/', [-4]),
    ('-1 2/', [-1]),
    # bitwise
    ('12 10 and', [8]),
    ('12 10 or', [14]),
    ('12 10 xor', [6]),
    ('0 not', [-1]),
    ('5 invert', [-6]),
    ('1 4 lshift', [16]),
    ('1 33 lshift', [2]),
    ('-1 28 rshift', [15]),
    ('-8 1 rshift', [2147483644]),
    # comparisons
    ('1 2 <', [TRUE]),
    ('2 1 <', [FALSE]),
    ('2 1 >', [TRUE]),
    ('3 3 =', [TRUE]),
    ('3 4 =', [FALSE]),
    ('3 4 <>', [TRUE]),
    ('-1 0<', [TRUE]),
    ('0 0<', [FALSE]),
    ('1 0>', [TRUE]),
    ('0 0=', [TRUE]),
    ('7 0=', [FALSE]),
    # stack
    ('1 dup', [1, 1]),
    ('0 ?dup', [0]),
    ('4 ?dup', [4, 4]),
    ('1 2 drop', [1]),
    ('1 2 over', [1, 2, 1]),
    ('1 2 swap', [2, 1]),
    ('1 2 3 rot', [2, 3, 1]),
    ('1 2 nip', [2]),
    ('1 2 tuck', [2, 1, 2]),
    ('5 6 depth', [5, 6, 2]),
    # return stack
    ('1 2 >r 3 r>', [1, 3, 2]),
    ('9 >r r@ r>', [9, 9]),
])
def test_stack_effect(forth, src, stack):
    forth.exec(src)
    assert forth.ds == stack


@pytest.mark.parametrize('src, stack', [
    ('2147483647 1+', [INT_MIN]),
    ('-2147483648 1-', [INT_MAX]),
    ('-2147483648 negate', [INT_MIN]),
    ('-2147483648 abs', [INT_MIN]),
    ('65536 65536 *', [0]),
    ('-2147483648 -1 /', [INT_MIN]),
    ('1073741824 2*', [INT_MIN]),
])
def test_arithmetic_wraps_to_32_bits(forth, src, stack):
    forth.exec(src)
    assert forth.ds == stack


@pytest.mark.parametrize('a, b', [(17, 5), (-17, 5), (17, -5), (-17, -5), (0, 3), (9, 9)])
def test_div_mod_identity(forth, a, b):
    forth.exec(f'{a} {b} / {a} {b} mod')
    q, r = forth.ds
    assert q * b + r == a
    assert abs(r) < abs(b)
    assert r == 0 or (r < 0) == (a < 0)


@pytest.mark.parametrize('src', ['1 0 /', '1 0 mod', '1 0 /mod', '1 2 0 */', '1 2 0 */mod'])
def test_division_by_zero(forth, src):
    with pytest.raises(DivisionByZero):
        forth.exec(src)


@pytest.mark.parametrize('word', [
    '+', '-', '*', '/', 'mod', 'and', 'or', 'xor', '<', '>', '=',
    'swap', 'over', 'nip', 'tuck', 'max', 'min', 'lshift', 'rshift',
])
def test_binary_words_underflow_without_consuming(forth, word):
    forth.exec('1')
    with pytest.raises(EmptyStack):
        forth.exec(word)
    assert forth.ds == [1]


@pytest.mark.parametrize('word', ['dup', 'drop', '?dup', 'negate', 'abs', '0=', '.', 'emit', '>r'])
def test_unary_words_underflow(forth, word):
    with pytest.raises(EmptyStack):
        forth.exec(word)


def test_return_stack_underflow(forth):
    with pytest.raises(EmptyStack):
        forth.exec('r>')
    with pytest.raises(EmptyStack):
        forth.exec('r@')


@pytest.mark.parametrize('prefix', ['', '5', '1 2 3'])
def test_dup_drop_is_neutral(forth, prefix):
    forth.exec(prefix + ' 4 dup drop')
    dupped = list(forth.ds)
    other = type(forth)()
    other.exec(prefix + ' 4')
    assert dupped == other.ds


def test_swap_swap_is_identity(forth):
    forth.exec('1 2 3 swap swap')
    assert forth.ds == [1, 2, 3]


# ── Output ────────────────────────────────────────────────────────────────────

def test_print(run):
    assert run('1 2 . .') == '2 1 '


def test_cr(run):
    assert run('cr') == '\n'


def test_emit(run):
    assert run('65 emit') == 'A'
    assert run('72 emit 105 emit') == 'Hi'


@pytest.mark.parametrize('n', [9999, 256, -1])
def test_emit_invalid_character(forth, n):
    with pytest.raises(InvalidCharacter):
        forth.exec(f'{n} emit')
    assert forth.ds == [n]


def test_dump_leaves_stack(forth, run):
    assert run('1 2 3 dump') == '<3> 1 2 3\n'
    assert forth.ds == [1, 2, 3]


def test_dump_empty(run):
    assert run('dump') == '<0> \n'


def test_words_lists_dictionary(forth, run):
    forth.exec(': double 2 * ;')
    names = run('words').split()
    assert 'square' in names
    assert 'double' in names
    assert ':' in names


def test_bye_exits(forth):
    with pytest.raises(SystemExit) as e:
        forth.exec('bye')
    assert e.value.code == 0
