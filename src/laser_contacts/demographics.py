"""
Administrative units, communities, and initial agent populations.

Communities are numbered contiguously unit by unit: the communities of unit `u` are
`start[u]:start[u + 1]`. Community `k` occupies the cell at flat offset `k` of the
domain geometry. Units also carry a raw identifier (e.g., a census tract code)
so that external records such as the worker-flow file can be mapped to units.
"""

import click
import numpy as np

from laser_contacts.agents import NUM_AGE_GROUPS
from laser_contacts.agents import WORKING_AGE_GROUPS
from laser_contacts.agents import AgentFrame
from laser_contacts.agents import AgeGroup
from laser_contacts.agents import Status
from laser_contacts.geometry import Geometry

# Age distribution used for demo populations (under 5, 5-17, 18-29, 30-64, 65+).
DEMO_AGE_DISTRIBUTION = np.array([0.06, 0.17, 0.16, 0.47, 0.14])


class Demographics:
    """Units, their communities, and their residential populations."""

    def __init__(self, start, population, unit_ids=None, unit_on_proc=None):
        """
        Parameters:

            start (array-like): Community offsets per unit, length nunit + 1, non-decreasing, start[0] == 0.
            population (array-like): Residential population per unit, length nunit.
            unit_ids (array-like, optional): Raw identifier per unit; defaults to the unit index.
            unit_on_proc (array-like, optional): Units whose residents are simulated here; defaults to all.
        """

        start = np.asarray(start, dtype=np.int64)
        population = np.asarray(population, dtype=np.int64)
        if start.ndim != 1 or len(start) < 2 or start[0] != 0 or np.any(np.diff(start) < 0):
            raise ValueError(f"start must be a non-decreasing array beginning at 0 with at least 2 entries ({start=})")
        if population.shape != (len(start) - 1,):
            raise ValueError(f"population must have one entry per unit ({population.shape=}, nunit={len(start) - 1})")
        if np.any(population < 0):
            raise ValueError("population must be non-negative")

        self.start = start
        self.population = population
        self.unit_ids = np.arange(self.nunit, dtype=np.int64) if unit_ids is None else np.asarray(unit_ids, dtype=np.int64)
        if self.unit_ids.shape != (self.nunit,):
            raise ValueError(f"unit_ids must have one entry per unit ({self.unit_ids.shape=})")
        self.id_to_unit = {int(uid): u for u, uid in enumerate(self.unit_ids)}
        self.unit_on_proc = np.ones(self.nunit, dtype=np.bool_) if unit_on_proc is None else np.asarray(unit_on_proc, dtype=np.bool_)
        self.unit_of_community = np.repeat(np.arange(self.nunit, dtype=np.int64), np.diff(start))

        return

    @property
    def nunit(self) -> int:
        return len(self.start) - 1

    @property
    def ncommunity(self) -> int:
        return int(self.start[-1])

    def communities(self, unit: int) -> np.ndarray:
        return np.arange(self.start[unit], self.start[unit + 1])

    def has_communities(self) -> np.ndarray:
        """Boolean mask of units that contain at least one community."""
        return self.start[1:] != self.start[:-1]

    def community_grid(self, geometry: Geometry) -> np.ndarray:
        """(nx, ny) array of the community in each cell, -1 for cells without one."""
        if self.ncommunity > geometry.ncells:
            raise ValueError(f"{self.ncommunity} communities do not fit in {geometry}")
        grid = np.full(geometry.ncells, -1, dtype=np.int64)
        grid[: self.ncommunity] = np.arange(self.ncommunity)
        return grid.reshape((geometry.ny, geometry.nx)).T

    def unit_grid(self, geometry: Geometry) -> np.ndarray:
        """(nx, ny) array of the unit owning each cell, -1 for cells without a community."""
        communities = self.community_grid(geometry)
        units = np.full(communities.shape, -1, dtype=np.int64)
        occupied = communities >= 0
        units[occupied] = self.unit_of_community[communities[occupied]]
        return units

    @classmethod
    def synthetic(cls, nunit: int, communities_per_unit: int, population_per_community: int) -> "Demographics":
        """Equal-sized units, each with the same number of equally populated communities."""
        start = np.arange(nunit + 1, dtype=np.int64) * communities_per_unit
        population = np.full(nunit, communities_per_unit * population_per_community, dtype=np.int64)
        return cls(start, population)


def init_agents_demo(demographics: Demographics, geometry: Geometry, params, prng, verbose: bool = False) -> AgentFrame:
    """
    Create a demo population: `params.agents_per_community` residents in every community.

    Residents get an age group, one of `params.nborhoods_per_community` neighborhoods,
    a school id if school age, and a workgroup if of working age. Work locations start
    unassigned. Every disease is seeded with `params.initial_infected` infected agents
    already past incubation; everyone else starts as never infected.
    """

    ncommunity = demographics.ncommunity
    per = int(params.agents_per_community)
    ndiseases = len(params.diseases)
    agents = AgentFrame(capacity=max(ncommunity * per, 1), ndiseases=ndiseases)
    istart, iend = agents.add(ncommunity * per)

    community = np.repeat(np.arange(ncommunity, dtype=np.int64), per)
    home_i, home_j = geometry.at_offset(community)
    agents.home_i[istart:iend] = home_i
    agents.home_j[istart:iend] = home_j
    agents.place(slice(istart, iend), home_i, home_j, geometry)

    count = iend - istart
    agents.age_group[istart:iend] = prng.choice(NUM_AGE_GROUPS, size=count, p=DEMO_AGE_DISTRIBUTION)
    agents.nborhood[istart:iend] = prng.integers(0, int(params.nborhoods_per_community), size=count)

    school_age = (agents.age_group == AgeGroup.AGE5TO17) | (agents.age_group == AgeGroup.UNDER5)
    agents.school[school_age] = 1 + agents.nborhood[school_age]

    working = np.isin(agents.age_group, WORKING_AGE_GROUPS)
    nworkgroups = max(per // int(params.workgroup_size), 1)
    agents.workgroup[working] = prng.integers(1, nworkgroups + 1, size=int(working.sum()))

    for d, disease in enumerate(params.diseases):
        seeds = prng.choice(count, size=min(int(params.initial_infected), count), replace=False)
        agents.status[d, seeds] = Status.INFECTED
        agents.disease_counter[d, seeds] = float(disease.incubation_length)

    if verbose:
        click.echo(f"Created {agents.count:,} agents in {ncommunity:,} communities across {demographics.nunit:,} units")

    return agents
