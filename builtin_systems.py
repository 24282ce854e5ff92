#!/usr/bin/env python3
#
# Built-in algebraic systems
# ==========================
#
#   tree     Tree    = Leaf(ATOM) | Node(Tree, Tree)                size = leaves
#   list     List    = Nil() | Cons(int, List)                      size = length
#   motzkin  Motzkin = Leaf(ATOM) | Unary(ATOM, M) | Binary(ATOM, M, M)
#   lambda   Lam     = Var(Nat) | Abs(ATOM, Lam) | App(ATOM, Lam, Lam)
#            Nat     = Z(ATOM) | S(ATOM, Nat)                       de Bruijn index
#

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from boltzmann_system import ATOM, AlgebraicSystem, Constructor, Prim, Value, unpoint

# ============================================================================
# LAMBDA TERMS
# ============================================================================

class TermType(Enum):
    VAR = 1
    ABS = 2
    APP = 3

@dataclass(slots=True, frozen=True)
class Term:
    #Immutable tree lambda term with de Bruijn indices.
    type: TermType
    var: Optional[int] = field(default=None)
    body: Optional['Term'] = field(default=None)
    left: Optional['Term'] = field(default=None)
    right: Optional['Term'] = field(default=None)

    def size(self) -> int:
        #Atoms of the sampled term: one per Abs/App node, index + 1 per variable.
        total = 0
        stack = [self]
        while stack:
            t = stack.pop()
            if t.type == TermType.VAR:
                total += t.var + 1
            elif t.type == TermType.ABS:
                total += 1
                stack.append(t.body)
            else:
                total += 1
                stack.append(t.left)
                stack.append(t.right)
        return total

    def free_depth(self) -> int:
        #Number of enclosing binders needed to close the term.
        need = 0
        stack = [(self, 0)]
        while stack:
            t, binders = stack.pop()
            if t.type == TermType.VAR:
                need = max(need, t.var + 1 - binders)
            elif t.type == TermType.ABS:
                stack.append((t.body, binders + 1))
            else:
                stack.append((t.left, binders))
                stack.append((t.right, binders))
        return need

# ============================================================================
# SYSTEMS
# ============================================================================

def binary_tree() -> AlgebraicSystem:
    return AlgebraicSystem().add(
        'Tree',
        Constructor('Leaf', [ATOM]),
        Constructor('Node', ['Tree', 'Tree']),
    )


def int_list() -> AlgebraicSystem:
    # No singularity in the tree-like sense: y = 1 / (1 - x) has a pole.
    return AlgebraicSystem().add(
        'List',
        Constructor('Nil', []),
        Constructor('Cons', [Prim('int'), 'List']),
    )


def motzkin() -> AlgebraicSystem:
    return AlgebraicSystem().add(
        'Motzkin',
        Constructor('Leaf', [ATOM]),
        Constructor('Unary', [ATOM, 'Motzkin']),
        Constructor('Binary', [ATOM, 'Motzkin', 'Motzkin']),
    )


def lambda_terms() -> AlgebraicSystem:
    system = AlgebraicSystem()
    system.add(
        'Lam',
        Constructor('Var', ['Nat'], lambda n: Term(TermType.VAR, var=n)),
        Constructor('Abs', [ATOM, 'Lam'], lambda body: Term(TermType.ABS, body=body)),
        Constructor('App', [ATOM, 'Lam', 'Lam'],
                    lambda left, right: Term(TermType.APP, left=left, right=right)),
        pytype=Term,
    )
    system.add(
        'Nat',
        Constructor('Z', [ATOM], lambda: 0),
        Constructor('S', [ATOM, 'Nat'], lambda n: n + 1),
        pytype=int,
    )
    return system


SYSTEMS: Dict[str, Tuple[Callable[[], AlgebraicSystem], str]] = {
    'tree': (binary_tree, 'Tree'),
    'list': (int_list, 'List'),
    'motzkin': (motzkin, 'Motzkin'),
    'lambda': (lambda_terms, 'Lam'),
}

# ============================================================================
# RENDERING
# ============================================================================

def render(value: Any) -> str:
    #Compact text form of a sampled value. Terms use de Bruijn notation.
    parts: List[str] = []
    stack: List[Any] = [unpoint(value)]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, Term):
            if item.type == TermType.VAR:
                parts.append(str(item.var))
            elif item.type == TermType.ABS:
                parts.append('\\.')
                stack.append(item.body)
            else:
                # Parens only around abstractions, application is left-associative.
                right = ['(', item.right, ')'] if item.right.type == TermType.ABS else [' ', item.right]
                left = ['(', item.left, ')'] if item.left.type == TermType.ABS else [item.left]
                stack.extend(reversed(left + right))
        elif isinstance(item, Value):
            if not item.args:
                parts.append(item.con)
                continue
            pending: List[Any] = [item.con, '(']
            for i, arg in enumerate(item.args):
                if i:
                    pending.append(', ')
                pending.append(arg if isinstance(arg, (Value, Term)) else repr(arg))
            pending.append(')')
            stack.extend(reversed(pending))
        else:
            parts.append(repr(unpoint(item)))
    return ''.join(parts)
