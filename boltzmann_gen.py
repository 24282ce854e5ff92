#!/usr/bin/env python3
#
# Boltzmann Samplers for Algebraic Data Types
# ===========================================

# Generates random values of recursively-defined types (trees, terms, lists)
# with a controlled average size, for property-based testing.

# SAMPLERS:
#   - generator:               singular ceiled rejection sampler, one oracle for all sizes
#   - pointed_generator:       pointed sampler over a dyadic ladder of oracles (2^0, 2^1, ...)
#   - simple_generator_fixed:  ceiled rejection at an oracle tuned to the exact target size
#   - pointed_generator_fixed: pointed sampler tuned to the rescaled target size
#   - ceiled_rejection_sampler: general form (pointing order, optional tolerance)

# SIZE:
#   Number of atoms (ATOM and Prim references) in a value. Ceiled rejection
#   aborts an attempt as soon as the counter passes (1 + tolerance) * n and
#   rejects it at the end when below (1 - tolerance) * n.

# USAGE:
#   Test:     python boltzmann_gen.py test --system tree --size 100 --n 20
#   Live:     python boltzmann_gen.py live --system lambda --size 40 --max-terms 1000
#   Validate: python boltzmann_gen.py validate --n 1000
#

import argparse
import json
import math
import random
import statistics
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np
from rich import box
from rich.console import Console
from rich.table import Table

from boltzmann_oracle import Oracle, OracleCache, singularity, solve, tune
from boltzmann_system import (ATOM, AlgebraicSystem, Alias, AliasR, AliasRef, Constructor,
                              DivergentSystem, MalformedSystem, Prim,
                              PointedValue, RetryLimitExceeded, SizeExceeded, TypeMismatch,
                              extract, max_size, min_size, point, pointed_name, unpoint)

SCHEMA_VERSION = "1.0"

# Size parameter range of finite types for pointed generators.
FINITE_SIZE_RANGE = 99

# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class Config:
    tolerance: float = 0.1            # size window: [(1 - t) n, (1 + t) n]
    solver: str = 'newton'            # 'newton' | 'iteration'
    solve_tolerance: float = 1e-12
    max_iterations: Optional[int] = None
    radius_epsilon: float = 1e-9      # relative precision of the singularity search
    max_radius: float = 2.0 ** 32
    max_retries: Optional[int] = None  # None: retry until accepted
    unsized_ceiling: int = 1000       # upper bound when no size is requested
    max_rung: Optional[int] = None    # largest dyadic rung for pointed generators
    warn_every: int = 10000           # consecutive rejections between warnings
    seed: Optional[int] = None

    def __post_init__(self):
        if self.solver not in ('newton', 'iteration'):
            raise ValueError(f"Unknown solver {self.solver!r}")
        if not 0.0 <= self.tolerance < 1.0:
            raise ValueError(f"tolerance must be in [0, 1), got {self.tolerance}")
        if self.max_retries is not None and self.max_retries < 1:
            raise ValueError("max_retries must be positive")
        if self.unsized_ceiling < 1:
            raise ValueError("unsized_ceiling must be positive")
        if self.max_iterations is None:
            self.max_iterations = 200 if self.solver == 'newton' else 100000

    def solver_options(self) -> Dict[str, Any]:
        return {'method': self.solver, 'tolerance': self.solve_tolerance,
                'max_iterations': self.max_iterations}

# ============================================================================
# RANDOM SOURCES
# ============================================================================

class RandomSource:
    #Capability interface consumed by the sampler.

    def incr(self) -> None:
        #Called for every atom charged by an alias. No-op outside rejection sampling.
        pass

    def real(self, upper: float) -> float:
        #Uniform draw in [0, upper).
        raise NotImplementedError

    def integer(self, upper: int) -> int:
        #Uniform draw in [0, upper - 1].
        raise NotImplementedError

    def primitive(self, kind: str) -> Any:
        #Default draw for a primitive leaf.
        if kind == 'int':
            return self.integer(2 ** 32) - 2 ** 31
        if kind == 'double':
            return self.real(1.0)
        if kind == 'char':
            return chr(32 + self.integer(95))
        raise TypeMismatch("'int', 'double' or 'char'", repr(kind), "primitive draw")


class StdRandomSource(RandomSource):
    #Adapter for random.Random.

    def __init__(self, rng: random.Random):
        self.rng = rng

    def real(self, upper: float) -> float:
        return self.rng.random() * upper

    def integer(self, upper: int) -> int:
        return self.rng.randrange(upper)


class NumpyRandomSource(RandomSource):
    #Adapter for numpy.random.Generator.

    def __init__(self, gen: np.random.Generator):
        self.gen = gen

    def real(self, upper: float) -> float:
        return float(self.gen.random()) * upper

    def integer(self, upper: int) -> int:
        return int(self.gen.integers(upper))


class CeiledSource(RandomSource):
    #Source handed to AliasR functions: incr() charges the attempt's size budget.

    def __init__(self, source: RandomSource, state: 'GenerationState'):
        self.source = source
        self.state = state

    def incr(self) -> None:
        self.state.incr()

    def real(self, upper: float) -> float:
        return self.source.real(upper)

    def integer(self, upper: int) -> int:
        return self.source.integer(upper)

    def primitive(self, kind: str) -> Any:
        return self.source.primitive(kind)


def as_source(source: Any, seed: Optional[int] = None) -> RandomSource:
    if isinstance(source, RandomSource):
        return source
    if source is None:
        return StdRandomSource(random.Random(seed))
    if isinstance(source, random.Random):
        return StdRandomSource(source)
    if isinstance(source, np.random.Generator):
        return NumpyRandomSource(source)
    raise TypeMismatch('RandomSource, random.Random or numpy.random.Generator',
                       type(source).__name__, "random source")

# ============================================================================
# SAMPLER CORE
# ============================================================================

class GenerationState:
    #Atom counter of one attempt, with an optional upper bound.
    __slots__ = ('size', 'bound')

    def __init__(self, bound: Optional[int] = None):
        self.size = 0
        self.bound = bound

    def incr(self) -> None:
        if self.bound is not None and self.size >= self.bound:
            raise SizeExceeded(self.bound)
        self.size += 1


class _Frame:
    __slots__ = ('con', 'pos', 'children')

    def __init__(self, con: Constructor):
        self.con = con
        self.pos = 0
        self.children: List[Any] = []


class Sampler:
    """
    Size-weighted sampler over one oracle of a closed system.

    Constructors are chosen with probability x^atoms * prod(y_args) / y_T.
    Every atom increments the generation state, which raises SizeExceeded
    as soon as the bound is passed. Arguments are expanded depth-first, left
    to right, with an explicit stack, so the draws are a pure function of
    the random source.
    """

    def __init__(self, system: AlgebraicSystem, oracle: Oracle):
        self.system = system
        self.oracle = oracle
        self.compiled = oracle.compiled

    def sample(self, type_id: str, source: RandomSource, state: GenerationState) -> Any:
        return self._run(self.compiled.index[type_id], source, state)

    def _open(self, t: int, source: RandomSource) -> _Frame:
        u = source.real(self.oracle.cumulative[t][-1])
        return _Frame(self.compiled.constructors[t][self.oracle.choose(t, u)])

    def _run(self, t: int, source: RandomSource, state: GenerationState) -> Any:
        out: List[Any] = []
        stack = [self._open(t, source)]
        while stack:
            frame = stack[-1]
            args = frame.con.args
            if frame.pos == len(args):
                stack.pop()
                value = frame.con.make(frame.children)
                (stack[-1].children if stack else out).append(value)
                continue
            ref = args[frame.pos]
            frame.pos += 1
            if ref is ATOM:
                state.incr()
            elif isinstance(ref, Prim):
                state.incr()
                frame.children.append(source.primitive(ref.kind))
            elif isinstance(ref, AliasRef):
                frame.children.append(self._alias(ref, source, state))
            else:
                stack.append(self._open(self.compiled.index[ref], source))
        return out[0]

    def _alias(self, ref: AliasRef, source: RandomSource, state: GenerationState) -> Any:
        via = ref.via
        if via is ATOM:
            state.incr()
            value = None
        elif isinstance(via, Prim):
            state.incr()
            value = source.primitive(via.kind)
        else:
            value = self._run(self.compiled.index[via], source, state)
        if ref.pointed:
            value = unpoint(value)
        alias = ref.alias
        alias_source = CeiledSource(source, state) if isinstance(alias, AliasR) else source
        tagged = alias.apply(value, alias_source)
        return tagged.unwrap(alias.target, self.system.pytype_of(alias.target))

# ============================================================================
# CEILED REJECTION
# ============================================================================

@dataclass(slots=True, frozen=True)
class Accepted:
    value: Any
    size: int


@dataclass(slots=True, frozen=True)
class Aborted:
    size: int


@dataclass(slots=True, frozen=True)
class Rejected:
    size: int


AttemptResult = Union[Accepted, Aborted, Rejected]


@dataclass(slots=True, frozen=True)
class Sample:
    value: Any
    size: int
    attempts: int


def size_window(size: int, tolerance: Optional[float]) -> Tuple[int, Optional[int]]:
    #Accepted sizes for a target: [(1 - t) n, (1 + t) n], or anything when t is None.
    if tolerance is None:
        return 0, None
    lower = max(0, math.ceil(size * (1.0 - tolerance) - 1e-9))
    upper = math.floor(size * (1.0 + tolerance) + 1e-9)
    return lower, upper


def attempt_once(sampler: Sampler, type_id: str, window: Tuple[int, Optional[int]],
                 source: RandomSource) -> AttemptResult:
    lower, upper = window
    state = GenerationState(upper)
    try:
        value = sampler.sample(type_id, source, state)
    except SizeExceeded:
        return Aborted(state.size)
    if state.size < lower:
        return Rejected(state.size)
    return Accepted(value, state.size)


def attempt(sampler: Sampler, type_id: str, window: Tuple[int, Optional[int]],
            source: RandomSource, max_retries: Optional[int] = None,
            warn_every: int = 0) -> Sample:
    #Retry fresh attempts until one lands in the window.
    attempts = 0
    while True:
        attempts += 1
        result = attempt_once(sampler, type_id, window, source)
        if isinstance(result, Accepted):
            return Sample(result.value, result.size, attempts)
        if max_retries is not None and attempts >= max_retries:
            raise RetryLimitExceeded(type_id, attempts, window)
        if warn_every and attempts % warn_every == 0:
            sys.stderr.write(f"\n[Warning: {attempts} rejected attempts for {type_id} "
                             f"in window [{window[0]}, {window[1]}]]\n")
            sys.stderr.flush()

# ============================================================================
# GENERATORS
# ============================================================================

_DEFAULT = object()


class Generator:
    """
    Boltzmann generator for one root type.

    The closed system (and its pointed derivative) is built on first use and
    cached along with every oracle the generator computes. Oracles are never
    evicted, and are read-only once solved, so one generator can serve
    several threads.
    """

    def __init__(self, system: AlgebraicSystem, root: str, aliases: Iterable[Alias] = (),
                 config: Optional[Config] = None, pointing: int = 0, tolerance: Any = _DEFAULT,
                 size: Optional[int] = None):
        if pointing < 0:
            raise ValueError("pointing order must be non-negative")
        self.config = config or Config()
        self.tolerance = self.config.tolerance if tolerance is _DEFAULT else tolerance
        if self.tolerance is not None and not 0.0 <= self.tolerance < 1.0:
            raise ValueError(f"tolerance must be in [0, 1), got {self.tolerance}")
        self.size = size
        self.source_system = system
        self.root = root
        self.aliases = tuple(aliases)
        self.pointing = pointing
        self.target = root
        for _ in range(pointing):
            self.target = pointed_name(self.target)
        self._check_aliases()
        self._lock = threading.Lock()
        self._system: Optional[AlgebraicSystem] = None
        self._closed: Optional[AlgebraicSystem] = None
        self._bounds: Tuple[int, Optional[int]] = (0, None)
        self._oracles = OracleCache(self._solve)
        self._default_source = as_source(None, self.config.seed)

    @property
    def ceiled(self) -> bool:
        #Whether aliases run inside the rejection budget.
        return self.tolerance is not None

    def _check_aliases(self):
        for alias in self.aliases:
            if not isinstance(alias, Alias):
                raise TypeMismatch('Alias', type(alias).__name__, f"aliases of {self.root!r}")
            if self.ceiled and not isinstance(alias, AliasR):
                raise TypeMismatch('AliasR', type(alias).__name__,
                                   f"rejection sampler for {self.root!r}")
            if not self.ceiled and isinstance(alias, AliasR):
                raise TypeMismatch('Alias', type(alias).__name__,
                                   f"pointed sampler for {self.root!r}")

    def _build(self):
        with self._lock:
            if self._system is None:
                closed = extract(self.source_system, self.root, self.aliases)
                self._bounds = (min_size(closed, self.root), max_size(closed, self.root))
                system = closed
                for _ in range(self.pointing):
                    system = point(system)
                if self.target not in system:
                    raise MalformedSystem(f"Values of {self.root!r} have no atom to point at")
                self._closed = closed
                self._system = system

    @property
    def system(self) -> AlgebraicSystem:
        if self._system is None:
            self._build()
        return self._system

    @property
    def closed(self) -> AlgebraicSystem:
        if self._closed is None:
            self._build()
        return self._closed

    @property
    def min_size(self) -> int:
        if self._closed is None:
            self._build()
        return self._bounds[0]

    @property
    def max_size(self) -> Optional[int]:
        if self._closed is None:
            self._build()
        return self._bounds[1]

    def _singular(self) -> Oracle:
        return singularity(self.system, self.config.radius_epsilon, self.config.max_radius,
                           **self.config.solver_options())

    def _tuned(self, size: float) -> Oracle:
        return tune(self.system, self.target, size, self.config.radius_epsilon,
                    self.config.max_radius, **self.config.solver_options())

    def _default(self) -> Oracle:
        #Oracle for requests without a size: largest size of finite types, half the ceiling otherwise.
        if self.max_size is not None:
            return self._tuned(self.rescale(FINITE_SIZE_RANGE))
        return self._tuned(self.config.unsized_ceiling / 2)

    def _solve(self, key: Any) -> Oracle:
        raise NotImplementedError

    def rescale(self, size: int) -> float:
        #Expected size for a size parameter: offset by the minimum size, spread over [0, 99] for finite types.
        top = self.max_size
        if top is None:
            return self.min_size + size
        return self.min_size + (top - self.min_size) * min(size, FINITE_SIZE_RANGE) / FINITE_SIZE_RANGE

    def key(self, size: Optional[int]) -> Any:
        return size

    def oracle(self, size: Any = _DEFAULT) -> Oracle:
        size = self.size if size is _DEFAULT else size
        return self._oracles.get(self.key(size))

    prepare = oracle

    def window(self, size: Optional[int]) -> Tuple[int, Optional[int]]:
        if size is None:
            return 0, self.config.unsized_ceiling
        return size_window(size, self.tolerance)

    def _source(self, source: Any) -> RandomSource:
        if source is not None:
            return as_source(source)
        return self._default_source

    def attempt_once(self, size: Any = _DEFAULT, source: Any = None) -> AttemptResult:
        size = self.size if size is _DEFAULT else size
        sampler = Sampler(self.system, self.oracle(size))
        return attempt_once(sampler, self.target, self.window(size), self._source(source))

    def sample(self, size: Any = _DEFAULT, source: Any = None) -> Sample:
        #Accepted value (still pointed for pointed generators), its size and the attempts used.
        size = self.size if size is _DEFAULT else size
        sampler = Sampler(self.system, self.oracle(size))
        return attempt(sampler, self.target, self.window(size), self._source(source),
                       self.config.max_retries, self.config.warn_every)

    def __call__(self, size: Any = _DEFAULT, source: Any = None) -> Any:
        return unpoint(self.sample(size, source).value)


class SingularGenerator(Generator):
    #Ceiled rejection at the singularity: one oracle shared by all sizes.

    def key(self, size: Optional[int]) -> Any:
        return None

    def _solve(self, key: Any) -> Oracle:
        return self._singular()


class TunedGenerator(Generator):
    #Oracle tuned so the expected size matches the target exactly.

    def _solve(self, key: Any) -> Oracle:
        if key is None:
            return self._default()
        return self._tuned(key)


class RescaledGenerator(TunedGenerator):
    #Tuned oracle per size parameter, rescaled onto the size range of the type.

    def _solve(self, key: Any) -> Oracle:
        if key is None:
            return self._default()
        return self._tuned(self.rescale(key))


class SparseGenerator(Generator):
    """
    Oracles on a dyadic ladder of sizes.

    Size parameters round up to the next rung of 0, 1, 2, 4, 8, ...; a
    parameter past the last rung (99 for finite types, config.max_rung
    otherwise) uses the last rung.
    """

    def rung(self, size: int) -> int:
        limit = FINITE_SIZE_RANGE if self.max_size is not None else self.config.max_rung
        s = 0 if size <= 0 else 1 << (size - 1).bit_length()
        if limit is not None and s >= limit:
            return limit
        return s

    def key(self, size: Optional[int]) -> Any:
        if size is None:
            return None
        return self.rung(size)

    def _solve(self, key: Any) -> Oracle:
        if key is None:
            return self._default()
        return self._tuned(self.rescale(key))


def generator(system: AlgebraicSystem, root: str, aliases: Iterable[AliasR] = (),
              config: Optional[Config] = None) -> SingularGenerator:
    """
    Singular ceiled rejection sampler.

    Works for recursive tree-like types whose generating function has a
    finite radius of convergence; the same oracle serves every size.
    """
    return SingularGenerator(system, root, aliases, config)


def pointed_generator(system: AlgebraicSystem, root: str, aliases: Iterable[Alias] = (),
                      config: Optional[Config] = None) -> SparseGenerator:
    """
    Generator of pointed values, unpointed before they are returned.

    Flatter size distribution than a plain Boltzmann sampler and no
    rejection; also works on lists and finite types. Relies on one oracle
    per dyadic rung.
    """
    return SparseGenerator(system, root, aliases, config, pointing=1, tolerance=None)


def simple_generator_fixed(system: AlgebraicSystem, root: str, aliases: Iterable[AliasR] = (),
                           config: Optional[Config] = None) -> TunedGenerator:
    #Ceiled rejection sampler around an oracle tuned to each requested size.
    return TunedGenerator(system, root, aliases, config)


def pointed_generator_fixed(system: AlgebraicSystem, root: str, aliases: Iterable[Alias] = (),
                            config: Optional[Config] = None) -> RescaledGenerator:
    #Pointed sampler tuned to each rescaled size parameter.
    return RescaledGenerator(system, root, aliases, config, pointing=1, tolerance=None)


def ceiled_rejection_sampler(system: AlgebraicSystem, root: str, pointing: int = 0,
                             size: Optional[int] = None, tolerance: Optional[float] = _DEFAULT,
                             aliases: Iterable[Alias] = (),
                             config: Optional[Config] = None) -> TunedGenerator:
    #k-th pointing with a tuned oracle; tolerance None disables filtering. `size` is the default target.
    return TunedGenerator(system, root, aliases, config, pointing=pointing, tolerance=tolerance,
                          size=size)


SAMPLERS = {
    'singular': generator,
    'pointed': pointed_generator,
    'simple': simple_generator_fixed,
    'pointed-fixed': pointed_generator_fixed,
}

# ============================================================================
# METRICS
# ============================================================================

class Metrics:
    #Track and report sampling metrics.

    def __init__(self):
        self.count = 0
        self.sizes = deque(maxlen=1000)
        self.attempts = deque(maxlen=1000)
        self.latencies = deque(maxlen=512)
        self.attempts_total = 0
        self.start_time = time.time()
        self.last_time = time.time()
        self.recent_count = 0

    def update(self, sample: Sample, latency: float):
        self.count += 1
        self.sizes.append(sample.size)
        self.attempts.append(sample.attempts)
        self.attempts_total += sample.attempts
        self.latencies.append(latency)
        self.recent_count += 1

    def percentile(self, values: List[float], p: float) -> float:
        if not values:
            return 0.0
        sorted_vals = sorted(values)
        k = int(len(sorted_vals) * p)
        return sorted_vals[min(k, len(sorted_vals) - 1)]

    def report(self) -> Dict[str, Any]:
        now = time.time()
        elapsed = now - self.start_time
        recent_elapsed = now - self.last_time
        lat_list = list(self.latencies)
        sizes = list(self.sizes)
        return {
            'samples': self.count,
            'samples_per_sec': round(self.count / elapsed, 1) if elapsed > 0 else 0,
            'recent_rate': round(self.recent_count / recent_elapsed, 1) if recent_elapsed > 0 else 0,
            'mean_size': round(statistics.fmean(sizes), 1) if sizes else 0,
            'stdev_size': round(statistics.pstdev(sizes), 1) if sizes else 0,
            'mean_attempts': round(statistics.fmean(self.attempts), 1) if self.attempts else 0,
            'acceptance_rate': round(self.count / self.attempts_total, 4) if self.attempts_total else 0,
            'latency_p50': round(self.percentile(lat_list, 0.50) * 1000, 2),
            'latency_p95': round(self.percentile(lat_list, 0.95) * 1000, 2),
            'latency_p99': round(self.percentile(lat_list, 0.99) * 1000, 2),
        }

    def reset_recent(self):
        self.last_time = time.time()
        self.recent_count = 0

# ============================================================================
# MODES
# ============================================================================

def make_generator(name: str, kind: str, config: Config) -> Generator:
    from builtin_systems import SYSTEMS
    build, root = SYSTEMS[name]
    return SAMPLERS[kind](build(), root, config=config)


def yield_samples(gen: Generator, size: Optional[int], config: Config) -> Iterator[Sample]:
    rng = random.Random(config.seed)
    source = StdRandomSource(rng)
    while True:
        yield gen.sample(size, source)


def live_mode(args, config: Config):
    #Streaming JSONL generation.
    from builtin_systems import render
    out_file = sys.stdout if args.out == '-' else open(args.out, 'w', buffering=1)
    metrics = Metrics()
    gen = make_generator(args.system, args.sampler, config)

    sys.stderr.write(f"[Starting generation to {args.out}]\n")
    sys.stderr.write("[Solving oracle...]\n")
    sys.stderr.flush()

    try:
        gen.prepare(args.size)
        last_metric_time = time.time()
        for draw_index, sample in enumerate(yield_samples(gen, args.size, config)):
            start_time = time.time()
            record = {
                'system': args.system,
                'sampler': args.sampler,
                'value': render(unpoint(sample.value)),
                'size': sample.size,
                'attempts': sample.attempts,
                'meta': {
                    'target_size': args.size,
                    'tolerance': gen.tolerance,
                    'x': gen.oracle(args.size).x,
                    'seed': config.seed,
                    'draw_index': draw_index,
                    'schema_version': SCHEMA_VERSION,
                },
            }
            out_file.write(json.dumps(record) + '\n')
            metrics.update(sample, time.time() - start_time)

            if time.time() - last_metric_time > 2.0:
                report = metrics.report()
                sys.stderr.write(f"\r[{report['samples']} samples | {report['recent_rate']:.1f}/s | "
                                 f"size={report['mean_size']:.1f}±{report['stdev_size']:.1f} | "
                                 f"attempts={report['mean_attempts']:.1f}]")
                sys.stderr.flush()
                metrics.reset_recent()
                last_metric_time = time.time()

            if args.max_terms and metrics.count >= args.max_terms:
                break
    except KeyboardInterrupt:
        sys.stderr.write("\n[Interrupted]\n")
    finally:
        if out_file != sys.stdout:
            out_file.close()
        final_report = metrics.report()
        sys.stderr.write(f"\n[Complete: {final_report['samples']} samples | "
                         f"mean_size={final_report['mean_size']} | "
                         f"acceptance={final_report['acceptance_rate']:.2%}]\n")


def test_mode(args, config: Config):
    #Preview samples in a table.
    from builtin_systems import render
    gen = make_generator(args.system, args.sampler, config)
    source = StdRandomSource(random.Random(config.seed))
    samples = [gen.sample(args.size, source) for _ in range(args.n)]
    oracle = gen.oracle(args.size)

    if args.no_ansi:
        print(f"{args.system} via {args.sampler} at x={oracle.x:.12g} "
              f"(expected size {oracle.expected_size(gen.target):.2f})")
        for s in samples:
            print(f"{s.size:6d} {s.attempts:6d}  {render(unpoint(s.value))[:70]}")
        return samples

    console = Console()
    table = Table(title=f"{args.system} samples (n={len(samples)}, x={oracle.x:.6g})", box=box.ROUNDED)
    table.add_column("Size", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Value")
    for s in samples[:15]:
        table.add_row(str(s.size), str(s.attempts), render(unpoint(s.value))[:60])
    console.print(table)
    return samples


def validate_mode(args, config: Config) -> bool:
    #Run the sampler validation suite.
    from builtin_systems import binary_tree, int_list

    print(f"\n{'='*60}")
    print("BOLTZMANN SAMPLER VALIDATION SUITE")
    print('='*60)

    passed = 0
    failed = 0
    rng = random.Random(config.seed if config.seed is not None else 42)
    source = StdRandomSource(rng)
    tree = binary_tree()

    def report(ok: bool, good: str, bad: str):
        nonlocal passed, failed
        if ok:
            print(f"  ✓ PASS: {good}")
            passed += 1
        else:
            print(f"  ✗ FAIL: {bad}")
            failed += 1

    print("\n[1] Oracle closed form")
    y, dy = solve(tree, 0.2, **config.solver_options())['Tree']
    ref_y, ref_dy = (1 - math.sqrt(0.2)) / 2, 1 / math.sqrt(0.2)
    ok = abs(y - ref_y) < 1e-9 and abs(dy - ref_dy) < 1e-7
    report(ok, f"y(0.2)={y:.10f}, y'(0.2)={dy:.8f}", f"y(0.2)={y!r} y'(0.2)={dy!r}")

    print("\n[2] Oracle consistency")
    a = solve(tree, 0.24, **config.solver_options())
    b = solve(tree, 0.24, **config.solver_options())
    report(a.as_dict() == b.as_dict(), "repeated solves are identical", "repeated solves differ")

    print("\n[3] Size window")
    gen = generator(tree, 'Tree', config=config)
    lower, upper = gen.window(100)
    sizes = [gen.sample(100, source).size for _ in range(args.n)]
    in_window = sum(lower <= s <= upper for s in sizes)
    report(in_window == len(sizes), f"{in_window}/{len(sizes)} sizes in [{lower}, {upper}]",
           f"only {in_window}/{len(sizes)} sizes in [{lower}, {upper}]")

    print("\n[4] Alias neutrality")
    unused = AliasR('Unused', lambda _, src: None)
    plain = generator(tree, 'Tree', config=config)
    aliased = generator(tree, 'Tree', [unused], config=config)
    seed = rng.randrange(2 ** 32)
    xs = [plain(30, random.Random(seed + i)) for i in range(20)]
    ys = [aliased(30, random.Random(seed + i)) for i in range(20)]
    report(xs == ys, "unused alias leaves samples unchanged", "unused alias changed samples")

    print("\n[5] Pointing round-trip")
    pgen = pointed_generator_fixed(tree, 'Tree', config=config)
    ok_count = 0
    for _ in range(min(args.n, 200)):
        s = pgen.sample(30, source)
        if isinstance(s.value, PointedValue) and tree.measure('Tree', unpoint(s.value)) == s.size:
            ok_count += 1
    report(ok_count == min(args.n, 200), f"{ok_count} pointed samples unpoint size-preserving",
           f"only {ok_count} pointed samples valid")

    print("\n[6] Pointed variance")
    lst = int_list()
    trials = max(args.n, 1000)
    pointed = pointed_generator_fixed(lst, 'List', config=config)
    simple = ceiled_rejection_sampler(lst, 'List', tolerance=None, config=config)
    p_sizes = [pointed.sample(50, source).size for _ in range(trials)]
    s_sizes = [simple.sample(50, source).size for _ in range(trials)]
    p_var, s_var = statistics.pvariance(p_sizes), statistics.pvariance(s_sizes)
    report(p_var < s_var, f"pointed var {p_var:.0f} < plain var {s_var:.0f} "
                          f"(mean {statistics.fmean(p_sizes):.1f})",
           f"pointed var {p_var:.0f} >= plain var {s_var:.0f}")

    print("\n[7] Divergence detection")
    loop = AlgebraicSystem().add('I', Constructor('C', ['I']))
    try:
        solve(loop, 0.5)
        report(False, "", "no error for data I = C I")
    except DivergentSystem as e:
        report(True, f"DivergentSystem: {e}", "")

    print(f"\n{'='*60}")
    if failed == 0:
        print(f"ALL TESTS PASSED ({passed}/7 test groups)")
        print('='*60)
        return True
    else:
        print(f"FAILURES: {failed} test groups failed")
        print('='*60)
        return False

# ============================================================================
# CLI
# ============================================================================

def parse_args(argv: Optional[List[str]] = None):
    from builtin_systems import SYSTEMS
    parser = argparse.ArgumentParser(description='Boltzmann sampler for algebraic data types')
    subparsers = parser.add_subparsers(dest='mode', required=True)
    samplers = list(SAMPLERS)

    live = subparsers.add_parser('live')
    live.add_argument('--system', default='tree', choices=sorted(SYSTEMS))
    live.add_argument('--sampler', default='singular', choices=samplers)
    live.add_argument('--size', type=int)
    live.add_argument('--tolerance', type=float, default=0.1)
    live.add_argument('--solver', default='newton', choices=['newton', 'iteration'])
    live.add_argument('--max-terms', type=int)
    live.add_argument('--max-retries', type=int)
    live.add_argument('--out', default='samples.jsonl')
    live.add_argument('--seed', type=int)

    test = subparsers.add_parser('test')
    test.add_argument('--system', default='tree', choices=sorted(SYSTEMS))
    test.add_argument('--sampler', default='singular', choices=samplers)
    test.add_argument('--size', type=int, default=20)
    test.add_argument('--n', type=int, default=20)
    test.add_argument('--tolerance', type=float, default=0.1)
    test.add_argument('--solver', default='newton', choices=['newton', 'iteration'])
    test.add_argument('--seed', type=int, default=1337)
    test.add_argument('--no-ansi', action='store_true')

    validate = subparsers.add_parser('validate')
    validate.add_argument('--n', type=int, default=1000)
    validate.add_argument('--seed', type=int)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    config = Config()
    if hasattr(args, 'tolerance'):
        config.tolerance = args.tolerance
    if hasattr(args, 'solver'):
        config.solver = args.solver
        config.max_iterations = None
    if hasattr(args, 'max_retries'):
        config.max_retries = args.max_retries
    if hasattr(args, 'seed'):
        config.seed = args.seed
    config.__post_init__()

    sys.stderr.write("=" * 60 + "\n")
    sys.stderr.write("Boltzmann Sampler v1.0\n")
    if hasattr(args, 'system'):
        sys.stderr.write(f"System: {args.system} | Sampler: {args.sampler} | Size: {args.size}\n")
    sys.stderr.write("=" * 60 + "\n")
    sys.stderr.flush()

    if args.mode == 'live':
        live_mode(args, config)
    elif args.mode == 'test':
        test_mode(args, config)
    elif args.mode == 'validate':
        success = validate_mode(args, config)
        sys.exit(0 if success else 1)

if __name__ == '__main__':
    main()
