"""Seeding and access for the laser-contacts pseudo-random number generators.

Simulation code draws from the generator returned by `prng()` (or `seed()`), so
two runs with the same seed see the same stream of draws. Numba's per-thread
generators are seeded alongside for kernels that sample inside `prange` loops.
Where a parallel kernel needs random values, the values are drawn up front from
`prng()` (one slot per task) so results do not depend on the number of threads.
"""

from datetime import datetime

import numba as nb
import numpy as np

__all__ = ["get_seed", "prng", "seed", "task_draws"]

_seed: np.uint32 = None
_prng: np.random.Generator = None


@nb.jit((nb.uint32,), nopython=True, nogil=True, parallel=True)
def _nbseed(seed):  # pragma: no cover
    np.random.seed(seed)
    nthreads = nb.get_num_threads()
    for i in nb.prange(nthreads):
        np.random.seed(seed + i)

    return


def seed(seed) -> np.random.Generator:
    """
    Seed the global generator and Numba's per-thread generators.

    Parameters:

        seed (int): The seed value.

    Returns:

        numpy.random.Generator: The freshly seeded global generator.
    """

    global _seed
    global _prng
    _seed = np.uint32(seed)
    np.random.seed(_seed)
    _prng = np.random.default_rng(_seed)
    _nbseed(np.uint32(_seed))

    return _prng


def get_seed() -> np.uint32:
    """Return the seed last passed to `seed()` (None if never seeded)."""

    return _seed


def prng() -> np.random.Generator:
    """Return the global generator, seeding from the clock on first use."""
    return _prng if _prng is not None else seed(np.uint32(datetime.now(tz=None).microsecond))  # noqa: DTZ005


def task_draws(ntasks: int, ndraws: int) -> np.ndarray:
    """
    Pre-draw `ndraws` uniform [0, 1) values for each of `ntasks` parallel tasks.

    Row `t` is task `t`'s private stream, so a `prange` kernel consuming these gives
    the same answer for a given seed regardless of thread count or scheduling.

    Returns:

        np.ndarray: float64 array of shape (ntasks, ndraws).
    """

    return prng().random((ntasks, ndraws))
