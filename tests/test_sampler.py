#!/usr/bin/env python3
"""
Size-weighted sampler core, generation state and random sources.
"""

import random
import statistics
import threading

import numpy as np
import pytest

from boltzmann_gen import (Config, GenerationState, NumpyRandomSource, Sampler, StdRandomSource,
                           as_source, generator)
from boltzmann_oracle import solve
from boltzmann_system import SizeExceeded, TypeMismatch, Value
from builtin_systems import Term, TermType, binary_tree, int_list, lambda_terms, render


def test_constructor_frequencies():
    tree = binary_tree()
    oracle = solve(tree, 0.2)
    sampler = Sampler(tree, oracle)
    source = StdRandomSource(random.Random(11))

    leaves = 0
    sizes = []
    for _ in range(20000):
        state = GenerationState()
        value = sampler.sample('Tree', source, state)
        leaves += value.con == 'Leaf'
        sizes.append(state.size)

    y = oracle['Tree'][0]
    assert leaves / 20000 == pytest.approx(0.2 / y, abs=0.02)
    assert statistics.fmean(sizes) == pytest.approx(oracle.expected_size('Tree'), abs=0.1)


def test_sampled_size_matches_structure():
    tree = binary_tree()
    sampler = Sampler(tree, solve(tree, 0.24))
    source = StdRandomSource(random.Random(5))
    for _ in range(200):
        state = GenerationState()
        value = sampler.sample('Tree', source, state)
        assert tree.measure('Tree', value) == state.size


def test_state_bound():
    state = GenerationState(3)
    for _ in range(3):
        state.incr()
    with pytest.raises(SizeExceeded):
        state.incr()
    assert state.size == 3


def test_sampler_aborts_at_bound():
    tree = binary_tree()
    sampler = Sampler(tree, solve(tree, 0.2))
    with pytest.raises(SizeExceeded):
        sampler.sample('Tree', StdRandomSource(random.Random(0)), GenerationState(0))


def test_deep_values_do_not_recurse():
    lst = int_list()
    sampler = Sampler(lst, solve(lst, 0.9995))
    source = StdRandomSource(random.Random(3))
    largest = 0
    for _ in range(20):
        state = GenerationState()
        value = sampler.sample('List', source, state)
        assert lst.measure('List', value) == state.size
        largest = max(largest, state.size)
    assert largest > 1500


def test_determinism():
    gen = generator(binary_tree(), 'Tree')
    assert gen(30, random.Random(7)) == gen(30, random.Random(7))
    assert gen(30, np.random.default_rng(7)) == gen(30, np.random.default_rng(7))


def test_seeded_default_source():
    a = generator(binary_tree(), 'Tree', config=Config(seed=9))
    b = generator(binary_tree(), 'Tree', config=Config(seed=9))
    assert [a(20) for _ in range(5)] == [b(20) for _ in range(5)]


def test_default_source_shared_across_threads():
    gen = generator(binary_tree(), 'Tree', config=Config(seed=9))
    barrier = threading.Barrier(8)
    seen = []

    def grab():
        barrier.wait()
        seen.append(gen._source(None))

    threads = [threading.Thread(target=grab) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(seen) == 8
    assert all(s is seen[0] for s in seen)


def test_as_source():
    assert isinstance(as_source(random.Random(1)), StdRandomSource)
    assert isinstance(as_source(np.random.default_rng(1)), NumpyRandomSource)
    source = StdRandomSource(random.Random(1))
    assert as_source(source) is source
    with pytest.raises(TypeMismatch):
        as_source('not a source')


def test_primitive_draws():
    for source in (StdRandomSource(random.Random(2)), NumpyRandomSource(np.random.default_rng(2))):
        for _ in range(100):
            n = source.primitive('int')
            assert isinstance(n, int) and -2 ** 31 <= n < 2 ** 31
            d = source.primitive('double')
            assert isinstance(d, float) and 0.0 <= d < 1.0
            c = source.primitive('char')
            assert isinstance(c, str) and c.isprintable() and len(c) == 1
        with pytest.raises(TypeMismatch):
            source.primitive('bytes')


def test_lambda_terms():
    gen = generator(lambda_terms(), 'Lam')
    source = random.Random(4)
    for _ in range(30):
        sample = gen.sample(40, source)
        assert isinstance(sample.value, Term)
        assert sample.value.size() == sample.size
        assert 36 <= sample.size <= 44


def test_render():
    leaf = Value('Leaf')
    assert render(Value('Node', (leaf, Value('Node', (leaf, leaf))))) == 'Node(Leaf, Node(Leaf, Leaf))'
    assert render(Value('Cons', (3, Value('Nil')))) == 'Cons(3, Nil)'

    var0 = Term(TermType.VAR, var=0)
    var1 = Term(TermType.VAR, var=1)
    ident = Term(TermType.ABS, body=var0)
    assert render(ident) == '\\.0'
    assert render(Term(TermType.APP, left=var0, right=var1)) == '0 1'
    assert render(Term(TermType.APP, left=ident, right=var0)) == '(\\.0) 0'
    assert render(Term(TermType.APP, left=var1, right=ident)) == '1(\\.0)'


def test_render_long_list():
    value = Value('Nil')
    for i in range(5000):
        value = Value('Cons', (i, value))
    assert render(value).count('Cons') == 5000
