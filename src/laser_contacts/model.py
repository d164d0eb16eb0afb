"""Simulation driver: builds the population and commute assignments, then runs the interaction passes tick by tick."""

import click
import numpy as np
from tqdm import tqdm

from laser_contacts.agents import Status
from laser_contacts.binning import BinCache
from laser_contacts.commute import FlowTable
from laser_contacts.commute import assign_work_locations
from laser_contacts.commute import build_flow_table
from laser_contacts.commute import gravity_flow
from laser_contacts.demographics import Demographics
from laser_contacts.demographics import init_agents_demo
from laser_contacts.geometry import Geometry
from laser_contacts.interaction import NeighborhoodInteraction
from laser_contacts.interaction import WorkInteraction
from laser_contacts.interaction import interact_agents
from laser_contacts.interaction import reset_probabilities
from laser_contacts.params import disease_parameters
from laser_contacts.params import validate
from laser_contacts.random import seed


class Model:
    """
    One simulation: geometry, demographics, agents, worker flow, and the two interaction contexts.

    Disease progression is not modelled here; each tick the accumulators in
    `agents.prob` are recomputed for the current agent states and summarised in
    `counts` and `expected`.
    """

    def __init__(self, params, demographics: Demographics = None, geometry: Geometry = None, agents=None, flow: FlowTable = None):
        validate(params)
        self.params = params
        self.verbose = bool(params.get("verbose", False))
        self.prng = seed(params.seed)

        self.geometry = geometry if geometry is not None else Geometry(*params.size)
        if demographics is None:
            per_unit = int(params.communities_per_unit)
            nunit = max(self.geometry.ncells // per_unit, 1)
            demographics = Demographics.synthetic(nunit, min(per_unit, self.geometry.ncells), int(params.agents_per_community))
        self.demographics = demographics

        self.agents = agents if agents is not None else init_agents_demo(self.demographics, self.geometry, params, self.prng, self.verbose)
        self.diseases = [disease_parameters(params, d) for d in range(len(params.diseases))]
        if len(self.diseases) != self.agents.ndiseases:
            raise ValueError(f"{len(self.diseases)} diseases configured but agents track {self.agents.ndiseases}")

        if flow is None:
            if params.get("workerflow"):
                flow = build_flow_table(params.workerflow, self.demographics, verbose=self.verbose)
            else:
                flow = FlowTable(gravity_flow(self.demographics, self.geometry)).cumulate().scale(self.demographics.population)
        self.flow = flow
        assign_work_locations(self.agents, self.demographics, self.geometry, self.flow, verbose=self.verbose)

        self.bins = BinCache(self.geometry)
        self.interactions = [NeighborhoodInteraction(self.bins), WorkInteraction(self.bins)]

        nticks = int(params.nticks)
        self.counts = np.zeros((nticks, len(self.diseases), len(Status)), dtype=np.uint32)
        self.expected = np.zeros((nticks, len(self.diseases)), dtype=np.float64)
        self.tick = 0

        return

    def step(self, tick: int) -> None:
        """Recompute every agent's infection probability for `tick` and record totals."""

        reset_probabilities(self.agents)
        interact_agents(self.agents, self.interactions, self.diseases, tick, concurrent=bool(self.params.get("concurrent", False)))

        for d in range(len(self.diseases)):
            self.counts[tick, d] = self.agents.counts(d)
            susceptible = self.agents.susceptible(d)
            self.expected[tick, d] = np.sum(1.0 - self.agents.prob[d][susceptible], dtype=np.float64)

        return

    def run(self) -> None:
        for tick in tqdm(range(int(self.params.nticks)), disable=not self.verbose):
            self.step(tick)
            if self.verbose:
                self.print_totals(tick)
            self.tick = tick + 1

        return

    def print_totals(self, tick: int) -> None:
        for d, disease in enumerate(self.params.diseases):
            counts = self.counts[tick, d]
            totals = ", ".join(f"{status.name.lower()}={int(counts[status]):,}" for status in Status)
            click.echo(f"tick {tick:>4} {disease.get('name', d)}: {totals}, expected new infections={self.expected[tick, d]:.3f}")

        return
