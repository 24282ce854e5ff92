#!/usr/bin/env python3
#
# Algebraic systems for Boltzmann sampling
# ========================================
#
# A system maps type identifiers to equations  T = C1 | C2 | ...
# Each constructor is an ordered list of references:
#
#   ATOM        anonymous unit of size, carries no payload
#   Prim(kind)  primitive leaf ('int', 'double', 'char') drawn from the
#               random source; counts as one unit of size
#   'Name'      another type of the system (self-reference allowed)
#
# Size of a value = number of atoms (ATOM and Prim) it contains.
#
# extract() closes a system over a root type and installs aliases,
# point() derives the pointed system used by the pointed samplers.

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

# ============================================================================
# ERRORS
# ============================================================================

class SamplerError(Exception):
    #Base class of every error raised by the sampler.
    pass


class DivergentSystem(SamplerError, RuntimeError):
    #No finite generating function: the oracle iteration does not converge.

    def __init__(self, message: str, type_ids: Sequence[str] = (), x: Optional[float] = None):
        self.type_ids = tuple(type_ids)
        self.x = x
        details = []
        if self.type_ids:
            details.append(f"types: {', '.join(self.type_ids)}")
        if x is not None:
            details.append(f"x={x!r}")
        if details:
            message = f"{message} ({'; '.join(details)})"
        super().__init__(message)


class TypeMismatch(SamplerError, TypeError):
    #A value, alias or source used at a type it was not declared for.

    def __init__(self, expected: Any, actual: Any, context: str = ''):
        self.expected = expected
        self.actual = actual
        where = f" in {context}" if context else ''
        super().__init__(f"Type mismatch{where}: expected {expected}, got {actual}")


class MalformedSystem(SamplerError, ValueError):
    #Undefined references, duplicate definitions and other construction errors.
    pass


class NoSingularity(SamplerError):
    #The system has an infinite radius of convergence (finite type).
    pass


class RetryLimitExceeded(SamplerError, RuntimeError):
    #Configured maximum number of rejection attempts exhausted.

    def __init__(self, type_id: str, attempts: int, window: Tuple[int, Optional[int]]):
        self.type_id = type_id
        self.attempts = attempts
        self.window = window
        super().__init__(f"No sample of {type_id} with size in "
                         f"[{window[0]}, {window[1]}] after {attempts} attempts")


class SizeExceeded(SamplerError):
    #Internal control signal of ceiled rejection, never leaves an attempt.

    def __init__(self, bound: int):
        self.bound = bound
        super().__init__(f"size bound {bound} exceeded")

# ============================================================================
# REFERENCES
# ============================================================================

class _Atom:
    __slots__ = ()

    def __repr__(self):
        return 'ATOM'

    def __reduce__(self):
        return 'ATOM'


ATOM = _Atom()

PRIM_TYPES = {'int': int, 'double': float, 'char': str}


@dataclass(slots=True, frozen=True)
class Prim:
    kind: str

    def __post_init__(self):
        if self.kind not in PRIM_TYPES:
            raise MalformedSystem(f"Unknown primitive kind {self.kind!r}, "
                                  f"expected one of {sorted(PRIM_TYPES)}")


@dataclass(slots=True, frozen=True)
class Value:
    #Default payload of a constructor without a build function.
    con: str
    args: Tuple[Any, ...] = ()


@dataclass(slots=True, frozen=True)
class Tagged:
    #A payload together with the runtime tag of the type it belongs to.
    tag: Any
    payload: Any

    def unwrap(self, expected: Any, pytype: Optional[type] = None) -> Any:
        if self.tag != expected:
            raise TypeMismatch(expected, self.tag, "tagged value")
        if pytype is not None and not isinstance(self.payload, pytype):
            raise TypeMismatch(pytype.__name__, type(self.payload).__name__,
                               f"payload of {expected!r}")
        return self.payload

# ============================================================================
# ALIASES
# ============================================================================

@dataclass(frozen=True, eq=False)
class Alias:
    """
    Substitute generator for a type.

    Every reference to `target` is replaced by `via`: a value of `via` is
    sampled and `fn(value, source)` produces the value of `target`. The
    default `via` is a single ATOM, so `fn` receives None and the alias
    costs one unit of size.

    Plain aliases get the unceiled random source; use AliasR inside
    rejection samplers.
    """
    target: Union[str, Prim]
    fn: Callable[[Any, Any], Any]
    via: Any = ATOM

    def __post_init__(self):
        if not isinstance(self.target, (str, Prim)):
            raise MalformedSystem(f"Alias target must be a type id or Prim, got {self.target!r}")

    def apply(self, value: Any, source: Any) -> Tagged:
        return Tagged(self.target, self.fn(value, source))


class AliasR(Alias):
    #Alias for rejection samplers: `fn` receives a source whose incr() charges the size budget.
    pass


@dataclass(slots=True, frozen=True, eq=False)
class AliasRef:
    #Reference left by extract() where an aliased type was referenced.
    alias: Alias
    via: Any
    pointed: bool = False


def is_atomic(ref: Any) -> bool:
    #ATOM and primitives: one unit of size, no sub-structure.
    return ref is ATOM or isinstance(ref, Prim)

# ============================================================================
# SYSTEMS
# ============================================================================

@dataclass(frozen=True, eq=False)
class Constructor:
    name: str
    args: Tuple[Any, ...] = ()
    build: Optional[Callable[..., Any]] = None

    def __post_init__(self):
        object.__setattr__(self, 'args', tuple(self.args))

    @property
    def atoms(self) -> int:
        count = 0
        for ref in self.args:
            if is_atomic(ref) or (isinstance(ref, AliasRef) and is_atomic(ref.via)):
                count += 1
        return count

    def make(self, children: Sequence[Any]) -> Any:
        if self.build is None:
            return Value(self.name, tuple(children))
        return self.build(*children)


class AlgebraicSystem:
    #Mapping from type identifiers to their constructors.

    def __init__(self):
        self.equations: Dict[str, Tuple[Constructor, ...]] = {}
        self.pytypes: Dict[Any, type] = {}
        self._compiled = None

    def add(self, type_id: str, *constructors: Constructor,
            pytype: Optional[type] = None) -> 'AlgebraicSystem':
        if not isinstance(type_id, str):
            raise MalformedSystem(f"Type identifiers are strings, got {type_id!r}")
        if type_id in self.equations:
            raise MalformedSystem(f"Type {type_id!r} defined twice")
        for con in constructors:
            if not isinstance(con, Constructor):
                raise MalformedSystem(f"{type_id}: expected Constructor, got {con!r}")
        self.equations[type_id] = tuple(constructors)
        if pytype is not None:
            self.pytypes[type_id] = pytype
        self._compiled = None
        return self

    def __contains__(self, type_id: Any) -> bool:
        return type_id in self.equations

    def __getitem__(self, type_id: str) -> Tuple[Constructor, ...]:
        try:
            return self.equations[type_id]
        except KeyError:
            raise MalformedSystem(f"Undefined type {type_id!r}") from None

    def __len__(self) -> int:
        return len(self.equations)

    def types(self) -> List[str]:
        return list(self.equations)

    def pytype_of(self, ref: Any) -> Optional[type]:
        if isinstance(ref, Prim):
            return PRIM_TYPES[ref.kind]
        return self.pytypes.get(ref)

    def constructor(self, type_id: str, name: str) -> Constructor:
        for con in self[type_id]:
            if con.name == name:
                return con
        raise MalformedSystem(f"Type {type_id!r} has no constructor {name!r}")

    def measure(self, type_id: str, value: Any) -> int:
        #Size of a Value tree of the given type (number of atoms).
        size = 0
        stack = [(type_id, value)]
        while stack:
            ref, v = stack.pop()
            if isinstance(ref, Prim):
                size += 1
                continue
            if not isinstance(v, Value):
                raise TypeMismatch('Value', type(v).__name__, f"measuring {ref!r}")
            con = self.constructor(ref, v.con)
            children = [r for r in con.args if r is not ATOM]
            if len(children) != len(v.args):
                raise TypeMismatch(f"{len(children)} arguments", f"{len(v.args)}",
                                   f"{ref}.{con.name}")
            size += len(con.args) - len(children)
            for child_ref, child in zip(children, v.args):
                if isinstance(child_ref, AliasRef):
                    raise MalformedSystem(f"Cannot measure through alias of {child_ref.alias.target!r}")
                stack.append((child_ref, child))
        return size

    def __repr__(self):
        lines = []
        for type_id, cons in self.equations.items():
            alts = ' | '.join(f"{c.name}({', '.join(map(_ref_repr, c.args))})" for c in cons)
            lines.append(f"{type_id} = {alts}")
        return '\n'.join(lines)


def _ref_repr(ref: Any) -> str:
    if isinstance(ref, AliasRef):
        return f"~{_ref_repr(ref.via)}"
    if isinstance(ref, Prim):
        return ref.kind
    return str(ref)

# ============================================================================
# EXTRACTION
# ============================================================================

def extract(system: AlgebraicSystem, root: str, aliases: Iterable[Alias] = ()) -> AlgebraicSystem:
    """
    Close `system` over the types reachable from `root`.

    References to an alias target stop the expansion: they become AliasRef
    references expanding the alias's `via` instead. The root itself is
    never aliased. Fails with MalformedSystem on undefined references and
    with DivergentSystem when a reachable type has no finite value.
    """
    by_target: Dict[Any, Alias] = {}
    for alias in aliases:
        if not isinstance(alias, Alias):
            raise TypeMismatch('Alias', type(alias).__name__, "alias list")
        if alias.target in by_target:
            raise MalformedSystem(f"Two aliases for {alias.target!r}")
        by_target[alias.target] = alias

    if root not in system:
        raise MalformedSystem(f"Undefined root type {root!r}")

    order = [root]
    seen = {root}

    def visit(type_id: str, owner: str):
        if type_id not in system:
            raise MalformedSystem(f"{owner} refers to undefined type {type_id!r}")
        if type_id not in seen:
            seen.add(type_id)
            order.append(type_id)

    def resolve(ref: Any, owner: str) -> Any:
        alias = by_target.get(ref) if isinstance(ref, (str, Prim)) else None
        if alias is not None:
            via = alias.via
            if isinstance(via, str):
                visit(via, f"alias of {alias.target!r}")
            elif not is_atomic(via):
                raise MalformedSystem(f"Alias of {alias.target!r} has invalid via {via!r}")
            return AliasRef(alias, via)
        if isinstance(ref, str):
            visit(ref, owner)
        elif not is_atomic(ref):
            raise MalformedSystem(f"{owner}: invalid reference {ref!r}")
        return ref

    closed = AlgebraicSystem()
    i = 0
    while i < len(order):
        type_id = order[i]
        i += 1
        cons = []
        for con in system[type_id]:
            owner = f"{type_id}.{con.name}"
            cons.append(Constructor(con.name, tuple(resolve(r, owner) for r in con.args), con.build))
        closed.add(type_id, *cons, pytype=system.pytypes.get(type_id))

    for target in by_target:
        pytype = system.pytype_of(target)
        if pytype is not None:
            closed.pytypes.setdefault(target, pytype)

    stuck = unproductive_types(closed)
    if stuck:
        raise DivergentSystem("No finite value and no alias breaking the recursion", stuck)
    return closed


def _ref_productive(ref: Any, productive: set) -> bool:
    if isinstance(ref, AliasRef):
        return _ref_productive(ref.via, productive)
    if isinstance(ref, str):
        return ref in productive
    return True


def unproductive_types(system: AlgebraicSystem) -> List[str]:
    #Types without any finite value.
    productive = set()
    changed = True
    while changed:
        changed = False
        for type_id, cons in system.equations.items():
            if type_id in productive:
                continue
            if any(all(_ref_productive(r, productive) for r in con.args) for con in cons):
                productive.add(type_id)
                changed = True
    return [t for t in system.equations if t not in productive]


def _sub_types(con: Constructor) -> List[str]:
    subs = []
    for ref in con.args:
        if isinstance(ref, AliasRef):
            ref = ref.via
        if isinstance(ref, str):
            subs.append(ref)
    return subs


def min_size(system: AlgebraicSystem, type_id: str) -> int:
    #Smallest number of atoms of a value of `type_id`.
    inf = float('inf')
    sizes = {t: inf for t in system.equations}
    changed = True
    while changed:
        changed = False
        for t, cons in system.equations.items():
            for con in cons:
                s = con.atoms + sum(sizes[sub] for sub in _sub_types(con))
                if s < sizes[t]:
                    sizes[t] = s
                    changed = True
    if sizes[type_id] == inf:
        raise DivergentSystem("No finite value", [type_id])
    return int(sizes[type_id])


def max_size(system: AlgebraicSystem, type_id: str) -> Optional[int]:
    #Largest number of atoms of a value of `type_id`, None when unbounded.
    memo: Dict[str, int] = {}
    active = set()

    def go(t: str) -> Optional[int]:
        if t in memo:
            return memo[t]
        if t in active:
            return None
        active.add(t)
        best = 0
        for con in system[t]:
            s = con.atoms
            for sub in _sub_types(con):
                m = go(sub)
                if m is None:
                    return None
                s += m
            best = max(best, s)
        active.discard(t)
        memo[t] = best
        return best

    return go(type_id)

# ============================================================================
# POINTING
# ============================================================================

@dataclass(slots=True, frozen=True)
class PointedValue:
    #A value with one of its atoms marked; `path` lists argument positions from the root.
    value: Any
    path: Tuple[int, ...]


def unpoint(value: Any) -> Any:
    #Erase the point marker(s).
    while isinstance(value, PointedValue):
        value = value.value
    return value


def pointed_name(type_id: str) -> str:
    return f"{type_id}'"


def _pointed_variant(con: Constructor, position: int) -> Constructor:
    args = list(con.args)
    ref = args[position]
    child = sum(1 for r in args[:position] if r is not ATOM)
    descend = isinstance(ref, str)
    if descend:
        args[position] = pointed_name(ref)
    elif isinstance(ref, AliasRef) and isinstance(ref.via, str):
        args[position] = AliasRef(ref.alias, pointed_name(ref.via), pointed=True)

    def build(*children):
        path = (position,)
        if descend:
            children = list(children)
            inner = children[child]
            children[child] = inner.value
            path = path + inner.path
        return PointedValue(con.make(children), path)

    return Constructor(f"{con.name}@{position}", tuple(args), build)


def point(system: AlgebraicSystem) -> AlgebraicSystem:
    """
    Derive the pointed system.

    Every type T gains a companion T' whose values are values of T with one
    atom marked. A constructor C(a1, ..., an) yields one variant per
    argument position: positions holding an atom mark the node itself,
    positions holding a type T_i mark a point inside that subtree (T_i'),
    the other arguments stay ordinary. The generating function of T' is
    x * dT/dx, so pointed sizes are weighted by n.
    """
    candidates = AlgebraicSystem()
    for type_id, cons in system.equations.items():
        candidates.add(type_id, *cons)
    for type_id, cons in system.equations.items():
        name = pointed_name(type_id)
        if name not in candidates:
            candidates.add(name, *[_pointed_variant(con, i)
                                   for con in cons for i in range(len(con.args))])

    # Types whose values all have size 0 have nothing to point at.
    stuck = set(unproductive_types(candidates))

    def reachable(con: Constructor) -> bool:
        return not any((r.via if isinstance(r, AliasRef) else r) in stuck
                       for r in con.args if isinstance(r, (str, AliasRef)))

    pointed = AlgebraicSystem()
    pointed.pytypes.update(system.pytypes)
    for type_id, cons in candidates.equations.items():
        if type_id in stuck:
            continue
        pytype = system.pytypes.get(type_id, PointedValue if type_id not in system else None)
        pointed.add(type_id, *[c for c in cons if reachable(c)], pytype=pytype)
    return pointed
