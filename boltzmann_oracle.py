#!/usr/bin/env python3
#
# Numerical oracles
# =================
#
# For an evaluation point x, the oracle holds the generating-function value
# y_T(x) and derivative y_T'(x) of every type of a closed system:
#
#   y_T(x) = sum over constructors C of  x^atoms(C) * prod_{S in subs(C)} y_S(x)
#
# Values are the least fixed point of the system (Newton iteration from 0 by
# default, plain substitution on request). Derivatives solve the linear
# system (I - J) y' = dF/dx exactly. The spectral radius of J at the fixed
# point must stay below 1; at or past the singularity the solve fails with
# DivergentSystem.

import math
import threading
from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from boltzmann_system import (AlgebraicSystem, AliasRef, DivergentSystem, NoSingularity,
                              is_atomic, unproductive_types)

NEWTON_MAX_ITERATIONS = 200
ITERATION_MAX_ITERATIONS = 100000

# Newton steps stop shrinking at the rounding floor; accept below this.
_NOISE_FLOOR = 1e-9

# ============================================================================
# COMPILED FORM
# ============================================================================

@dataclass(slots=True)
class CompiledConstructor:
    atoms: int
    subs: Tuple[int, ...]


class CompiledSystem:
    #Index-based view of a closed system used by the solver and the sampler.

    def __init__(self, system: AlgebraicSystem):
        self.names = system.types()
        self.index = {name: i for i, name in enumerate(self.names)}
        self.constructors = [system.equations[name] for name in self.names]
        self.equations: List[List[CompiledConstructor]] = []
        for name in self.names:
            compiled = []
            for con in system.equations[name]:
                atoms = 0
                subs = []
                for ref in con.args:
                    if isinstance(ref, AliasRef):
                        ref = ref.via
                    if is_atomic(ref):
                        atoms += 1
                    else:
                        if ref not in self.index:
                            raise DivergentSystem("Reference outside the system", [name, str(ref)])
                        subs.append(self.index[ref])
                compiled.append(CompiledConstructor(atoms, tuple(subs)))
            self.equations.append(compiled)
        self.unproductive = unproductive_types(system)
        self.recursive = self._has_cycle()

    def __len__(self):
        return len(self.names)

    def _has_cycle(self) -> bool:
        state = [0] * len(self.names)

        def visit(t: int) -> bool:
            state[t] = 1
            for con in self.equations[t]:
                for s in con.subs:
                    if state[s] == 1 or (state[s] == 0 and visit(s)):
                        return True
            state[t] = 2
            return False

        return any(state[t] == 0 and visit(t) for t in range(len(self.names)))

    def evaluate(self, x: float, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        #F(x, y), Jacobian dF/dy and dF/dx.
        n = len(self.names)
        F = np.zeros(n)
        J = np.zeros((n, n))
        Fx = np.zeros(n)
        for t, cons in enumerate(self.equations):
            for con in cons:
                base = x ** con.atoms
                ys = [y[s] for s in con.subs]
                rest = math.prod(ys)
                F[t] += base * rest
                if con.atoms:
                    Fx[t] += con.atoms * x ** (con.atoms - 1) * rest
                for k, s in enumerate(con.subs):
                    J[t, s] += base * math.prod(ys[:k] + ys[k + 1:])
        return F, J, Fx

    def values(self, x: float, y: np.ndarray) -> np.ndarray:
        F = np.zeros(len(self.names))
        for t, cons in enumerate(self.equations):
            for con in cons:
                F[t] += x ** con.atoms * math.prod(y[s] for s in con.subs)
        return F


def compile_system(system: AlgebraicSystem) -> CompiledSystem:
    if system._compiled is None:
        system._compiled = CompiledSystem(system)
    return system._compiled

# ============================================================================
# ORACLE
# ============================================================================

class Oracle:
    #Generating-function values at one evaluation point, with branch weights.

    def __init__(self, compiled: CompiledSystem, x: float, y: np.ndarray, dy: np.ndarray):
        self.compiled = compiled
        self.x = x
        self.y = y
        self.dy = dy
        self.cumulative: List[List[float]] = []
        for cons in compiled.equations:
            total = 0.0
            cum = []
            for con in cons:
                total += x ** con.atoms * math.prod(float(y[s]) for s in con.subs)
                cum.append(total)
            self.cumulative.append(cum)

    def __getitem__(self, type_id: str) -> Tuple[float, float]:
        t = self.compiled.index[type_id]
        return float(self.y[t]), float(self.dy[t])

    def as_dict(self) -> Dict[str, Tuple[float, float]]:
        return {name: self[name] for name in self.compiled.names}

    def expected_size(self, type_id: str) -> float:
        #Mean size x * y'/y of the Boltzmann distribution of `type_id` at x.
        y, dy = self[type_id]
        if y <= 0.0:
            return 0.0
        return self.x * dy / y

    def choose(self, t: int, u: float) -> int:
        #Constructor index for a uniform draw u in [0, y_T).
        cum = self.cumulative[t]
        return min(bisect_right(cum, u), len(cum) - 1)

    def __repr__(self):
        return f"Oracle(x={self.x!r}, types={len(self.compiled)})"

# ============================================================================
# SOLVER
# ============================================================================

def _offending(cs: CompiledSystem, mask: np.ndarray) -> List[str]:
    #Names of the flagged types, every type when none is flagged.
    names = [name for name, bad in zip(cs.names, mask) if bad]
    return names or list(cs.names)


def _newton(cs: CompiledSystem, x: float, tolerance: float, max_iterations: int) -> np.ndarray:
    n = len(cs)
    y = np.zeros(n)
    identity = np.eye(n)
    last = float('inf')
    for _ in range(max_iterations):
        F, J, _ = cs.evaluate(x, y)
        try:
            step = np.linalg.solve(identity - J, F - y)
        except np.linalg.LinAlgError:
            raise DivergentSystem("Singular Jacobian during Newton iteration", cs.names, x) from None
        y = y + step
        if not np.all(np.isfinite(y)):
            raise DivergentSystem("Newton iteration overflowed", _offending(cs, ~np.isfinite(y)), x)
        negative = y < -tolerance * max(1.0, float(np.max(np.abs(y))))
        if np.any(negative):
            raise DivergentSystem("Newton iteration left the positive domain",
                                  _offending(cs, negative), x)
        y = np.maximum(y, 0.0)
        scale = np.maximum(np.abs(y), np.finfo(float).tiny)
        rel = float(np.max(np.abs(step) / scale)) if n else 0.0
        if rel <= tolerance or (rel <= _NOISE_FLOOR and rel >= last):
            return y
        last = rel
    raise DivergentSystem(f"Newton iteration did not converge in {max_iterations} steps",
                          _offending(cs, np.abs(step) > tolerance * scale), x)


def _iterate(cs: CompiledSystem, x: float, tolerance: float, max_iterations: int) -> np.ndarray:
    y = np.zeros(len(cs))
    moving = np.ones(len(cs), dtype=bool)
    for _ in range(max_iterations):
        F = cs.values(x, y)
        if not np.all(np.isfinite(F)) or (len(F) and float(np.max(F)) > 1e150):
            raise DivergentSystem("Fixed-point iteration diverged",
                                  _offending(cs, ~(np.abs(F) <= 1e150)), x)
        moving = np.abs(F - y) > tolerance * np.abs(F)
        y = F
        if not np.any(moving):
            return y
    raise DivergentSystem(f"Fixed-point iteration did not converge in {max_iterations} steps",
                          _offending(cs, moving), x)


def solve(system: AlgebraicSystem, x: float, method: str = 'newton',
          tolerance: float = 1e-12, max_iterations: Optional[int] = None) -> Oracle:
    """
    Oracle of `system` at evaluation point x.

    Raises DivergentSystem when x is at or beyond the singularity, or when
    some type of the system has no finite value.
    """
    cs = compile_system(system)
    if cs.unproductive:
        raise DivergentSystem("No finite value", cs.unproductive, x)
    if x < 0.0 or not math.isfinite(x):
        raise DivergentSystem("Evaluation point out of range", cs.names, x)

    if method == 'newton':
        y = _newton(cs, x, tolerance, max_iterations or NEWTON_MAX_ITERATIONS)
    elif method == 'iteration':
        y = _iterate(cs, x, tolerance, max_iterations or ITERATION_MAX_ITERATIONS)
    else:
        raise ValueError(f"Unknown solver method {method!r}")

    _, J, Fx = cs.evaluate(x, y)
    if len(cs):
        radius = float(np.max(np.abs(np.linalg.eigvals(J))))
        if not radius < 1.0:
            raise DivergentSystem(f"Jacobian spectral radius {radius:.6g} >= 1", cs.names, x)
    try:
        dy = np.linalg.solve(np.eye(len(cs)) - J, Fx)
    except np.linalg.LinAlgError:
        raise DivergentSystem("Singular system for derivatives", cs.names, x) from None
    if not np.all(np.isfinite(dy)):
        raise DivergentSystem("Non-finite derivatives", _offending(cs, ~np.isfinite(dy)), x)
    return Oracle(cs, x, y, dy)

# ============================================================================
# EVALUATION POINTS
# ============================================================================

def _try_solve(system: AlgebraicSystem, x: float, **options) -> Optional[Oracle]:
    try:
        return solve(system, x, **options)
    except DivergentSystem:
        return None


def singularity(system: AlgebraicSystem, epsilon: float = 1e-9,
                max_radius: float = 2.0 ** 32, **options) -> Oracle:
    """
    Oracle at the largest evaluation point found below the singularity.

    Doubling search for a divergent upper bound, then bisection until the
    bracket is within `epsilon` (relative). Raises NoSingularity for
    non-recursive systems or when no divergence shows up below
    `max_radius`, DivergentSystem when the system diverges at every x > 0.
    """
    cs = compile_system(system)
    if cs.unproductive:
        raise DivergentSystem("No finite value", cs.unproductive)
    if not cs.recursive:
        raise NoSingularity("Non-recursive system has an infinite radius of convergence")

    lo, lo_oracle = 0.0, None
    hi = 1.0
    oracle = _try_solve(system, hi, **options)
    while oracle is not None:
        lo, lo_oracle = hi, oracle
        hi *= 2.0
        if hi > max_radius:
            raise NoSingularity(f"No singularity below {max_radius!r}")
        oracle = _try_solve(system, hi, **options)

    x = hi
    while lo_oracle is None:
        x /= 2.0
        if x < 2.0 ** -64:
            raise DivergentSystem("System diverges at every positive evaluation point", cs.names)
        lo_oracle = _try_solve(system, x, **options)
        if lo_oracle is None:
            hi = x
        else:
            lo = x

    while hi - lo > epsilon * hi:
        mid = (lo + hi) / 2.0
        oracle = _try_solve(system, mid, **options)
        if oracle is None:
            hi = mid
        else:
            lo, lo_oracle = mid, oracle
    return lo_oracle


def tune(system: AlgebraicSystem, type_id: str, size: float, epsilon: float = 1e-9,
         max_radius: float = 2.0 ** 32, max_steps: int = 200, **options) -> Oracle:
    """
    Oracle whose expected size for `type_id` is `size`.

    The expected size increases with x, so bisect on [0, singularity).
    Targets out of reach return the closest bound.
    """
    cs = compile_system(system)
    if cs.recursive:
        top = singularity(system, epsilon=epsilon, max_radius=max_radius, **options)
    else:
        x = 1.0
        top = solve(system, x, **options)
        while top.expected_size(type_id) < size and x < max_radius:
            x *= 2.0
            top = solve(system, x, **options)
    if top.expected_size(type_id) <= size:
        return top

    lo, hi, best = 0.0, top.x, top
    for _ in range(max_steps):
        mid = (lo + hi) / 2.0
        oracle = _try_solve(system, mid, **options)
        if oracle is None:
            hi = mid
            continue
        mean = oracle.expected_size(type_id)
        if oracle[type_id][0] <= 0.0 or mean < size:
            lo = mid
        else:
            hi, best = mid, oracle
        if abs(mean - size) <= epsilon * max(size, 1.0) and oracle[type_id][0] > 0.0:
            return oracle
        if hi - lo <= epsilon * hi:
            break
    return best

# ============================================================================
# CACHE
# ============================================================================

class OracleCache:
    #Memoized oracles, computed at most once per key.

    def __init__(self, compute: Callable[[Any], Oracle]):
        self._compute = compute
        self._values: Dict[Any, Oracle] = {}
        self._lock = threading.Lock()

    def get(self, key: Any) -> Oracle:
        with self._lock:
            if key not in self._values:
                self._values[key] = self._compute(key)
            return self._values[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def keys(self) -> List[Any]:
        return list(self._values)
