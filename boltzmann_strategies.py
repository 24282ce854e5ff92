"""
Hypothesis strategies drawing Boltzmann samples of an algebraic system.
"""

from typing import Iterable, Optional, Union

from hypothesis import strategies as st

from boltzmann_gen import SAMPLERS, Config, Generator
from boltzmann_system import Alias, AlgebraicSystem


def samples(gen: Generator, size: Union[None, int, st.SearchStrategy] = None):
    """
    Strategy for values of an existing generator.

    Args:
        gen: Any generator returned by the sampler entry points
        size: Target size, a strategy of target sizes, or None for unsized draws

    Randomness comes from a Random seeded by Hypothesis, so failing
    examples replay but are not shrunk structurally.
    """
    sizes = size if isinstance(size, st.SearchStrategy) else st.just(size)
    return st.builds(lambda n, rng: gen(n, rng), sizes, st.randoms(use_true_random=True))


def boltzmann(system: AlgebraicSystem, root: str,
              size: Union[None, int, st.SearchStrategy] = None,
              aliases: Iterable[Alias] = (), sampler: str = 'singular',
              config: Optional[Config] = None):
    """
    Generate a hypothesis strategy for values of `root` in `system`.

    Args:
        system: Algebraic system holding `root`
        root: Type to sample
        size: Target size, a strategy of target sizes, or None
        aliases: Aliases of the chosen sampler's flavor
        sampler: One of 'singular', 'pointed', 'simple', 'pointed-fixed'
        config: Sampler configuration

    Returns:
        A hypothesis strategy whose examples are unpointed values of `root`
    """
    if sampler not in SAMPLERS:
        raise ValueError(f"Unknown sampler {sampler!r}, expected one of {sorted(SAMPLERS)}")
    gen = SAMPLERS[sampler](system, root, aliases, config)
    return samples(gen, size)
