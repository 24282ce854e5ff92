#!/usr/bin/env python3
"""
Oracle values, radius search and size tuning against closed forms.
"""

import math
import threading
import time

import pytest

from boltzmann_oracle import OracleCache, compile_system, singularity, solve, tune
from boltzmann_system import (ATOM, AlgebraicSystem, Constructor, DivergentSystem,
                              NoSingularity)
from builtin_systems import binary_tree, int_list, lambda_terms, motzkin


def test_binary_tree_closed_form():
    y, dy = solve(binary_tree(), 0.2)['Tree']
    assert y == pytest.approx((1 - math.sqrt(0.2)) / 2, abs=1e-10)
    assert dy == pytest.approx(1 / math.sqrt(0.2), abs=1e-8)


def test_list_closed_form():
    y, dy = solve(int_list(), 0.5)['List']
    assert y == pytest.approx(2.0, abs=1e-10)
    assert dy == pytest.approx(4.0, abs=1e-8)


def test_iteration_matches_newton():
    newton = solve(motzkin(), 0.3)
    iteration = solve(motzkin(), 0.3, method='iteration')
    assert iteration['Motzkin'][0] == pytest.approx(newton['Motzkin'][0], rel=1e-9)
    assert iteration['Motzkin'][1] == pytest.approx(newton['Motzkin'][1], rel=1e-6)


def test_repeated_solves_identical():
    a = solve(lambda_terms(), 0.25)
    b = solve(lambda_terms(), 0.25)
    assert a.as_dict() == b.as_dict()


def test_unknown_method():
    with pytest.raises(ValueError):
        solve(binary_tree(), 0.2, method='bisect')


def test_singularities():
    assert singularity(binary_tree()).x == pytest.approx(0.25, abs=1e-6)
    assert singularity(motzkin()).x == pytest.approx(1 / 3, abs=1e-6)
    assert singularity(int_list()).x == pytest.approx(1.0, abs=1e-6)


def test_beyond_singularity_diverges():
    with pytest.raises(DivergentSystem):
        solve(binary_tree(), 0.3)


def test_divergence_names_types_and_point():
    for method in ('newton', 'iteration'):
        with pytest.raises(DivergentSystem) as info:
            solve(binary_tree(), 0.3, method=method)
        assert info.value.type_ids == ('Tree',)
        assert info.value.x == 0.3
        assert 'Tree' in str(info.value)


def test_no_finite_constructor_diverges():
    system = AlgebraicSystem().add('I', Constructor('C', ['I']))
    with pytest.raises(DivergentSystem):
        solve(system, 0.5)


def test_zero_size_cycle_diverges():
    # A = Leaf | Wrap A has infinitely many values of size 0.
    system = AlgebraicSystem().add(
        'A',
        Constructor('Leaf', []),
        Constructor('Wrap', ['A']),
    )
    with pytest.raises(DivergentSystem):
        solve(system, 0.1)
    with pytest.raises(DivergentSystem):
        singularity(system)


def test_finite_type_has_no_singularity():
    system = AlgebraicSystem().add(
        'Bool',
        Constructor('T', [ATOM]),
        Constructor('F', [ATOM]),
    )
    assert not compile_system(system).recursive
    with pytest.raises(NoSingularity):
        singularity(system)


def test_expected_size():
    oracle = solve(binary_tree(), 0.2)
    y, dy = oracle['Tree']
    assert oracle.expected_size('Tree') == pytest.approx(0.2 * dy / y)


def test_tune_hits_target():
    oracle = tune(binary_tree(), 'Tree', 50)
    assert oracle.expected_size('Tree') == pytest.approx(50, abs=0.01)
    assert oracle.x < 0.25

    oracle = tune(int_list(), 'List', 50)
    assert oracle.expected_size('List') == pytest.approx(50, abs=0.01)
    assert oracle.x == pytest.approx(50 / 51, abs=1e-6)


def test_choose_follows_cumulative_weights():
    oracle = solve(binary_tree(), 0.2)
    y = oracle['Tree'][0]
    assert oracle.cumulative[0][-1] == pytest.approx(y)
    assert oracle.choose(0, 0.1) == 0
    assert oracle.choose(0, 0.25) == 1
    assert oracle.choose(0, 10.0) == 1


def test_cache_computes_once():
    calls = []

    def compute(key):
        calls.append(key)
        time.sleep(0.05)
        return solve(binary_tree(), key)

    cache = OracleCache(compute)
    threads = [threading.Thread(target=cache.get, args=(0.2,)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert calls == [0.2]
    assert 0.2 in cache
    assert len(cache) == 1
    assert cache.get(0.2) is cache.get(0.2)
