#!/usr/bin/env python3
"""
Hypothesis strategy binding.
"""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from boltzmann_gen import pointed_generator
from boltzmann_strategies import boltzmann, samples
from boltzmann_system import Value
from builtin_systems import Term, binary_tree, int_list, lambda_terms

SETTINGS = settings(max_examples=25, deadline=None,
                    suppress_health_check=[HealthCheck.too_slow])


@SETTINGS
@given(boltzmann(binary_tree(), 'Tree', size=20))
def test_tree_values_in_window(value):
    assert 18 <= binary_tree().measure('Tree', value) <= 22


@SETTINGS
@given(boltzmann(int_list(), 'List', size=st.integers(5, 30), sampler='pointed'))
def test_pointed_list_values(value):
    assert isinstance(value, Value)
    assert value.con in ('Nil', 'Cons')


@SETTINGS
@given(boltzmann(lambda_terms(), 'Lam', size=30))
def test_lambda_values(value):
    assert isinstance(value, Term)
    assert 27 <= value.size() <= 33


@SETTINGS
@given(samples(pointed_generator(binary_tree(), 'Tree'), size=16))
def test_samples_of_existing_generator(value):
    assert binary_tree().measure('Tree', value) >= 1


def test_unknown_sampler():
    with pytest.raises(ValueError):
        boltzmann(binary_tree(), 'Tree', sampler='exact')
