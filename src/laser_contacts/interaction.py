"""
Pairwise interaction passes over binned agents.

For each context (neighborhood/community, workplace) and each disease, every
susceptible agent `i` is visited in bin order and every other agent `j` in the
same cell that is infectious (infected and past the incubation length) applies the
context's transmission rule to `i`'s infection-probability accumulator
(`agents.prob[d, i]`, the probability of *not* being infected this tick).

Each parallel task owns exactly one susceptible agent and is the only writer of
that agent's accumulator during a pass, so no atomic updates are needed within a
pass. Diseases are processed one after another; the return of each kernel call is
the barrier before the next disease. When the two contexts are run concurrently
(`interact_agents(..., concurrent=True)`) each writes into its own buffer of
factors and the buffers are multiplied into the accumulator once both finish.
Multiplication commutes, so the result does not depend on processing order.
"""

from concurrent.futures import ThreadPoolExecutor

import numba as nb
import numpy as np

from laser_contacts.agents import Status
from laser_contacts.binning import BinCache
from laser_contacts.binning import BinIndex
from laser_contacts.transmission import INCUBATION_LENGTH
from laser_contacts.transmission import NBORHOOD
from laser_contacts.transmission import WORK
from laser_contacts.transmission import context_factor

_NEVER = np.int8(Status.NEVER)
_INFECTED = np.int8(Status.INFECTED)
_SUSCEPTIBLE = np.int8(Status.SUSCEPTIBLE)


@nb.njit(nogil=True, cache=True)
def _nb_interact_one(
    ii, context, permutation, offsets, cells, status, counter, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale, prob
):  # pragma: no cover
    i = permutation[ii]
    if (status[i] != _NEVER) and (status[i] != _SUSCEPTIBLE):
        return
    incubation = parm[INCUBATION_LENGTH]
    cell = cells[i]
    local = 1.0
    for jj in range(offsets[cell], offsets[cell + 1]):
        j = permutation[jj]
        if j == i:
            continue
        if (status[j] == _INFECTED) and (counter[j] >= incubation):
            local *= context_factor(context, j, i, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale)
    prob[i] *= local

    return


@nb.njit(parallel=True, nogil=True, cache=True)
def _nb_interact(
    context, permutation, offsets, cells, status, counter, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale, prob
):  # pragma: no cover
    for ii in nb.prange(len(permutation)):
        _nb_interact_one(
            ii, context, permutation, offsets, cells, status, counter, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale, prob
        )

    return


# Used when whole context passes run side by side on worker threads.
@nb.njit(nogil=True, cache=True)
def _nb_interact_serial(
    context, permutation, offsets, cells, status, counter, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale, prob
):  # pragma: no cover
    for ii in range(len(permutation)):
        _nb_interact_one(
            ii, context, permutation, offsets, cells, status, counter, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale, prob
        )

    return


def check_bins(bins: BinIndex, count: int) -> None:
    """
    Verify a bin index matches a population of `count` agents before a pass.

    Raises:

        IndexError: If the index refers to agents outside [0, count).
        ValueError: If the offsets are malformed.
    """

    if bins.nitems != count or len(bins.cells) != count:
        raise IndexError(f"bin index covers {bins.nitems} agents, population has {count}")
    if count and (bins.permutation.min() < 0 or bins.permutation.max() >= count):
        raise IndexError(f"bin permutation refers to agents outside [0, {count})")
    if bins.nbins < 0 or bins.offsets[0] != 0 or bins.offsets[-1] != count:
        raise ValueError(f"bin offsets do not span [0, {count})")

    return


def reset_probabilities(agents) -> None:
    """Set every accumulator back to 1.0 (certain survival) at the start of a tick."""
    agents.prob[:, :] = 1.0

    return


class InteractionModel:
    """Base class for one interaction context: bins agents, then runs the pairwise kernel per disease."""

    name = None
    context = None

    def __init__(self, bins: BinCache, scale: float = 1.0):
        """
        Parameters:

            bins (BinCache): Shared cache of per-context bin indices.
            scale (float): Contact-rate multiplier applied to every factor (uniform across cells).
        """
        self.bins = bins
        self.scale = float(scale)

        return

    def interact_agents(self, agents, diseases, tick: int, out: np.ndarray = None, serial: bool = False) -> None:
        """
        Apply this context's contacts to the accumulators of every disease.

        Parameters:

            agents (AgentFrame): The population.
            diseases (list[np.ndarray]): Packed parameters per disease (see `params.pack_disease()`).
            tick (int): Current tick; bins are rebuilt when it changes.
            out (np.ndarray, optional): (ndiseases, count) array to multiply into instead of `agents.prob`.
            serial (bool): Use the single-threaded kernel.
        """

        bins = self.bins.get(agents, self.name, tick)
        check_bins(bins, agents.count)
        target = agents.prob if out is None else out
        kernel = _nb_interact_serial if serial else _nb_interact

        for d, parm in enumerate(diseases):
            kernel(
                self.context,
                bins.permutation,
                bins.offsets,
                bins.cells,
                agents.status[d],
                agents.disease_counter[d],
                agents.age_group,
                agents.nborhood,
                agents.school,
                agents.withdrawn,
                agents.workgroup,
                agents.work_i,
                parm,
                self.scale,
                target[d],
            )

        return

    def __repr__(self) -> str:
        return f"{type(self).__name__}(scale={self.scale})"


class NeighborhoodInteraction(InteractionModel):
    """Community contacts within a cell, plus neighborhood contacts between residents of the same neighborhood."""

    name = "nborhood"
    context = NBORHOOD


class WorkInteraction(InteractionModel):
    """Contacts between coworkers (same workgroup, both at work) within a cell."""

    name = "work"
    context = WORK


def interact_agents(agents, models, diseases, tick: int, concurrent: bool = False) -> None:
    """
    Run every interaction model for one tick.

    With `concurrent=True` the models run side by side on a thread pool, each
    multiplying into a private buffer; the buffers are folded into `agents.prob`
    after all of them have finished.
    """

    if not concurrent or len(models) < 2:
        for model in models:
            model.interact_agents(agents, diseases, tick)
        return

    # Build bins up front so worker threads only read the cache.
    for model in models:
        model.bins.get(agents, model.name, tick)

    buffers = [np.ones((len(diseases), agents.count), dtype=agents.prob.dtype) for _ in models]
    with ThreadPoolExecutor(max_workers=len(models)) as executor:
        futures = [
            executor.submit(model.interact_agents, agents, diseases, tick, buffer, True) for model, buffer in zip(models, buffers)
        ]
        for future in futures:
            future.result()

    prob = agents.prob
    for buffer in buffers:
        prob *= buffer

    return
