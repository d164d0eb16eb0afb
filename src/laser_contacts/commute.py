"""
Commute (work location) assignment from an origin-destination worker-flow table.

The worker-flow input is a flat binary file of little-endian
`(uint32 from, uint32 to, uint32 count)` records giving the number of workers
commuting from unit `from` to unit `to` (raw unit identifiers). The builder
accumulates the records into a square matrix, turns each row into a cumulative
distribution, and rescales it to the modelled population:

    number = rint(population / 2000)
    scale  = 1.02 * 2000 * number / population

(the 1.02 puts back the ~2% of workers missing from the census reporting week;
populations are modelled in multiples of 2000).

Each working-age agent then draws `r` uniformly in `[0, nwork)` with
`nwork = uint(2000 * rint(population / 2000) * 0.586)`; the destination unit is
the first unit whose cumulative bound exceeds `r`. Draws at or beyond the row
total leave the agent's work location unchanged.
"""

from pathlib import Path

import click
import numba as nb
import numpy as np

from laser_contacts.agents import WORKING_AGE_GROUPS
from laser_contacts.demographics import Demographics
from laser_contacts.geometry import Geometry
from laser_contacts.random import task_draws

RECORD = np.dtype([("from", "<u4"), ("to", "<u4"), ("number", "<u4")])

POPULATION_GRANULARITY = 2000
CENSUS_CORRECTION = 1.02
WORKING_AGE_FRACTION = 0.586
STAY_IN_HOME_COMMUNITY = 0.25


class FlowTable:
    """Worker-flow matrix owned by the assignor; cumulative and scaled once, read-only afterwards."""

    def __init__(self, flow: np.ndarray, rows: np.ndarray = None):
        """
        Parameters:

            flow (np.ndarray): (nunit, nunit) raw worker counts.
            rows (np.ndarray, optional): Boolean mask of origin rows held here; defaults to all rows.
        """

        flow = np.asarray(flow)
        if flow.ndim != 2 or flow.shape[0] != flow.shape[1]:
            raise ValueError(f"flow must be a square matrix ({flow.shape=})")
        if np.any(flow < 0):
            raise ValueError("flow must contain only non-negative counts")

        self.flow = flow.astype(np.int64)
        self.rows = np.ones(flow.shape[0], dtype=np.bool_) if rows is None else np.asarray(rows, dtype=np.bool_)
        self.cumulative = False
        self.scaled = False

        return

    @property
    def nunit(self) -> int:
        return self.flow.shape[0]

    def cumulate(self) -> "FlowTable":
        """Convert each held row to its running sum, flow[i][j] += flow[i][j - 1]."""

        if self.cumulative:
            raise ValueError("flow table is already cumulative")
        self.flow[self.rows] = np.cumsum(self.flow[self.rows], axis=1)
        self.cumulative = True

        return self

    def scale(self, population) -> "FlowTable":
        """Rescale held rows with a non-zero population (see module docstring); entries are re-rounded."""

        if not self.cumulative:
            raise ValueError("flow table must be cumulative before scaling")
        if self.scaled:
            raise ValueError("flow table has already been scaled")

        population = np.asarray(population, dtype=np.float64)
        rows = self.rows & (population > 0)
        self.flow[rows] = np.rint(self.flow[rows] * scale_factors(population[rows])[:, np.newaxis]).astype(np.int64)
        self.scaled = True
        self.flow.setflags(write=False)

        return self

    def total(self, origin: int) -> int:
        """Total (cumulative) workers leaving `origin`."""
        return int(self.flow[origin, -1])

    def destination(self, origin: int, r: int) -> int:
        """First unit whose cumulative bound exceeds `r`, or -1 if `r` is beyond the row total."""
        return int(_nb_destination(self.flow[origin], np.int64(r)))


def scale_factors(population) -> np.ndarray:
    """Per-unit scale from census worker counts to modelled population."""
    population = np.asarray(population, dtype=np.float64)
    number = np.rint(population / POPULATION_GRANULARITY)
    return CENSUS_CORRECTION * (POPULATION_GRANULARITY * number) / population


def working_population(population) -> np.ndarray:
    """Working-age population per unit at the modelled granularity (truncated to an integer)."""
    number = np.rint(np.asarray(population, dtype=np.float64) / POPULATION_GRANULARITY)
    return (POPULATION_GRANULARITY * number * WORKING_AGE_FRACTION).astype(np.int64)


def _map_ids(raw: np.ndarray, demographics: Demographics) -> np.ndarray:
    """Unit index for each raw unit id via `demographics.id_to_unit`, -1 for unknown ids."""
    ids, inverse = np.unique(raw, return_inverse=True)
    units = np.array([demographics.id_to_unit.get(int(uid), -1) for uid in ids], dtype=np.int64)
    return units[inverse.reshape(-1)]


def read_workerflow(filename, demographics: Demographics, verbose: bool = False) -> FlowTable:
    """
    Read raw worker-flow records into a (non-cumulative) FlowTable.

    Only origins on this process (`demographics.unit_on_proc`) and destinations
    with at least one community are kept. Records naming unknown unit ids are
    skipped. Repeated (from, to) pairs add up.

    Raises:

        FileNotFoundError: If the file does not exist.
        ValueError: If the file size is not a whole number of records.
    """

    path = Path(filename)
    if not path.is_file():
        raise FileNotFoundError(f"worker flow file {path} not found")
    size = path.stat().st_size
    if size % RECORD.itemsize:
        raise ValueError(f"worker flow file {path} is {size} bytes, not a multiple of the {RECORD.itemsize} byte record size")

    records = np.fromfile(path, dtype=RECORD)
    origin = _map_ids(records["from"].astype(np.int64), demographics)
    destination = _map_ids(records["to"].astype(np.int64), demographics)

    keep = (origin >= 0) & (destination >= 0)
    keep[keep] = demographics.unit_on_proc[origin[keep]] & demographics.has_communities()[destination[keep]]

    flow = np.zeros((demographics.nunit, demographics.nunit), dtype=np.int64)
    np.add.at(flow, (origin[keep], destination[keep]), records["number"][keep].astype(np.int64))

    if verbose:
        click.echo(f"Read {len(records):,} worker flow records from {path} ({int(keep.sum()):,} used, {int(flow.sum()):,} workers)")

    return FlowTable(flow, rows=demographics.unit_on_proc)


def build_flow_table(filename, demographics: Demographics, verbose: bool = False) -> FlowTable:
    """Read, cumulate, and scale the worker flow for `demographics`."""
    return read_workerflow(filename, demographics, verbose=verbose).cumulate().scale(demographics.population)


def unit_centroids(demographics: Demographics, geometry: Geometry) -> np.ndarray:
    """(nunit, 2) mean cell coordinates of each unit's communities (NaN for units without any)."""
    i, j = geometry.at_offset(np.arange(demographics.ncommunity))
    counts = np.bincount(demographics.unit_of_community, minlength=demographics.nunit).astype(np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        ci = np.bincount(demographics.unit_of_community, weights=i, minlength=demographics.nunit) / counts
        cj = np.bincount(demographics.unit_of_community, weights=j, minlength=demographics.nunit) / counts
    return np.stack([ci, cj], axis=1)


def gravity_flow(
    demographics: Demographics, geometry: Geometry, a: float = 1.0, b: float = 1.0, c: float = 2.0, home_fraction: float = 0.5
) -> np.ndarray:
    """
    Synthetic raw worker flow for when no worker-flow file is available.

    A fraction `home_fraction` of each unit's working population works in its home unit;
    the rest is spread over the other units with community cells in proportion to the
    gravity model p_i^a * p_j^b / d_ij^c, d_ij being the distance between unit centroids
    in cells.

    Returns:

        np.ndarray: (nunit, nunit) int64 worker counts (not cumulative).
    """

    if not 0.0 <= home_fraction <= 1.0:
        raise ValueError(f"home_fraction must be in [0, 1] ({home_fraction=})")

    pops = demographics.population.astype(np.float64)
    centroids = unit_centroids(demographics, geometry)
    distances = np.sqrt(((centroids[:, np.newaxis, :] - centroids[np.newaxis, :, :]) ** 2).sum(axis=2))
    distances = np.fmax(distances, 1.0)  # units whose centroids coincide are one cell apart
    reachable = demographics.has_communities()

    network = np.zeros_like(distances)
    off_diagonal = ~np.eye(demographics.nunit, dtype=np.bool_) & reachable[np.newaxis, :] & reachable[:, np.newaxis]
    network[off_diagonal] = (pops[:, np.newaxis] ** a * pops[np.newaxis, :] ** b)[off_diagonal] / distances[off_diagonal] ** c
    rowsums = network.sum(axis=1)
    nonzero = rowsums > 0
    network[nonzero] /= rowsums[nonzero, np.newaxis]

    workers = working_population(demographics.population).astype(np.float64)
    home = np.where(nonzero, home_fraction, 1.0) * workers
    flow = network * (workers - home)[:, np.newaxis]
    flow[np.diag_indices_from(flow)] = np.where(reachable, home, 0.0)

    return np.rint(flow).astype(np.int64)


def write_workerflow(filename, records) -> None:
    """Write (from, to, count) triples in the binary worker-flow format."""
    data = np.array([tuple(record) for record in records], dtype=RECORD)
    data.tofile(Path(filename))

    return


@nb.njit(nogil=True, cache=True)
def _nb_destination(row, r):  # pragma: no cover
    """First index whose cumulative bound exceeds `r`, -1 if `r` is at or beyond the row total."""
    if r >= row[-1]:
        return -1
    to = 0
    while r >= row[to]:
        to += 1
    return to


@nb.njit(parallel=True, nogil=True, cache=True)
def _nb_assign(eligible, origin, nwork, home_community, flow, start, draws, nx, work_i, work_j, assigned):  # pragma: no cover
    for ip in nb.prange(len(eligible)):
        if not eligible[ip]:
            continue
        frm = origin[ip]
        r = min(np.int64(draws[ip, 0] * nwork[ip]), nwork[ip] - 1)
        to = _nb_destination(flow[frm], r)
        if to < 0:
            continue

        if (frm == to) and (draws[ip, 1] < STAY_IN_HOME_COMMUNITY):
            community = home_community[ip]
        else:
            ncomm = start[to + 1] - start[to]
            community = start[to] + min(np.int64(draws[ip, 2] * ncomm), ncomm - 1)

        work_i[ip] = community % nx
        work_j[ip] = community // nx
        assigned[ip] = True

    return


def assign_work_locations(
    agents, demographics: Demographics, geometry: Geometry, flow: FlowTable, draws: np.ndarray = None, verbose: bool = False
) -> np.ndarray:
    """
    Draw a work location for every working-age agent.

    Parameters:

        agents (AgentFrame): Population; `work_i` / `work_j` are updated in place.
        demographics (Demographics): Units, communities and populations.
        geometry (Geometry): Maps the chosen community to its cell.
        flow (FlowTable): Cumulative, scaled worker flow.
        draws (np.ndarray, optional): (count, 3) uniform [0, 1) values per agent: destination draw,
            stay-in-home-community draw, community draw. Defaults to `task_draws()` from the global PRNG.

    Returns:

        np.ndarray: Boolean mask of agents that received a work location.
    """

    if not flow.cumulative:
        raise ValueError("flow table must be cumulative before assigning work locations")

    units = demographics.unit_grid(geometry)
    communities = demographics.community_grid(geometry)
    origin = units[agents.home_i, agents.home_j]
    home_community = communities[agents.home_i, agents.home_j]

    nwork = working_population(demographics.population)[np.maximum(origin, 0)]
    eligible = np.isin(agents.age_group, WORKING_AGE_GROUPS) & (origin >= 0) & (nwork > 0)
    eligible[eligible] = flow.rows[origin[eligible]]

    if draws is None:
        draws = task_draws(agents.count, 3)
    if draws.shape != (agents.count, 3):
        raise ValueError(f"draws must have shape ({agents.count}, 3) ({draws.shape=})")

    assigned = np.zeros(agents.count, dtype=np.bool_)
    _nb_assign(
        eligible,
        origin,
        nwork,
        home_community,
        flow.flow,
        demographics.start,
        draws,
        geometry.nx,
        agents.work_i,
        agents.work_j,
        assigned,
    )

    if verbose:
        click.echo(f"Assigned work locations to {int(assigned.sum()):,} of {int(eligible.sum()):,} working-age agents")

    return assigned
