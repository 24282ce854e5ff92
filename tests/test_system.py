#!/usr/bin/env python3
"""
Algebraic system construction, extraction and size bounds.
"""

import pytest

from boltzmann_system import (ATOM, AlgebraicSystem, Alias, AliasR, AliasRef, Constructor,
                              DivergentSystem, MalformedSystem, Prim, Tagged, TypeMismatch,
                              Value, extract, max_size, min_size, unproductive_types)
from builtin_systems import binary_tree, int_list, lambda_terms


def small() -> AlgebraicSystem:
    return AlgebraicSystem().add(
        'Small',
        Constructor('A', [ATOM]),
        Constructor('B', [ATOM, ATOM, ATOM]),
    )


def test_duplicate_type_rejected():
    system = binary_tree()
    with pytest.raises(MalformedSystem):
        system.add('Tree', Constructor('Leaf', [ATOM]))


def test_unknown_primitive_kind():
    with pytest.raises(MalformedSystem):
        Prim('float')


def test_extract_closes_over_root():
    system = binary_tree().add('Orphan', Constructor('O', [ATOM]))
    closed = extract(system, 'Tree')
    assert closed.types() == ['Tree']


def test_extract_undefined_reference():
    system = AlgebraicSystem().add('Box', Constructor('B', ['Missing']))
    with pytest.raises(MalformedSystem, match='Missing'):
        extract(system, 'Box')


def test_extract_undefined_root():
    with pytest.raises(MalformedSystem):
        extract(binary_tree(), 'Forest')


def test_no_finite_value_is_divergent():
    system = AlgebraicSystem().add('I', Constructor('C', ['I']))
    assert unproductive_types(system) == ['I']
    with pytest.raises(DivergentSystem) as info:
        extract(system, 'I')
    assert info.value.type_ids == ('I',)


def test_alias_replaces_references():
    system = AlgebraicSystem()
    system.add('Holder', Constructor('H', [ATOM, 'Stream']))
    system.add('Stream', Constructor('SCons', [ATOM, 'Stream']), pytype=str)
    alias = AliasR('Stream', lambda _, src: 'cut')

    closed = extract(system, 'Holder', [alias])
    assert closed.types() == ['Holder']
    ref = closed['Holder'][0].args[1]
    assert isinstance(ref, AliasRef)
    assert ref.alias is alias
    assert closed.pytype_of('Stream') is str


def test_alias_via_type_is_closed_over():
    system = lambda_terms()
    system.add('Holder', Constructor('H', [ATOM, 'Lam']))
    closed = extract(system, 'Holder', [Alias('Lam', lambda n, src: n, via='Nat')])
    assert sorted(closed.types()) == ['Holder', 'Nat']


def test_two_aliases_for_one_type():
    aliases = [AliasR('Tree', lambda _, src: None), AliasR('Tree', lambda _, src: None)]
    with pytest.raises(MalformedSystem):
        extract(binary_tree(), 'Tree', aliases)


def test_size_bounds():
    assert min_size(binary_tree(), 'Tree') == 1
    assert max_size(binary_tree(), 'Tree') is None
    assert min_size(int_list(), 'List') == 0
    assert min_size(small(), 'Small') == 1
    assert max_size(small(), 'Small') == 3


def test_measure_counts_atoms():
    tree = binary_tree()
    leaf = Value('Leaf')
    value = Value('Node', (Value('Node', (leaf, leaf)), leaf))
    assert tree.measure('Tree', value) == 3

    lst = int_list()
    assert lst.measure('List', Value('Cons', (4, Value('Cons', (5, Value('Nil')))))) == 2


def test_measure_rejects_foreign_values():
    with pytest.raises(TypeMismatch):
        binary_tree().measure('Tree', ('Leaf',))


def test_tagged_unwrap():
    assert Tagged('Stream', 'x').unwrap('Stream', str) == 'x'
    with pytest.raises(TypeMismatch):
        Tagged('Stream', 'x').unwrap('Tree')
    with pytest.raises(TypeMismatch):
        Tagged('Stream', 3).unwrap('Stream', str)
