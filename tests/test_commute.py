"""Tests for the worker-flow table and commute destination assignment."""

import tempfile
import unittest
from pathlib import Path

import numpy as np
import pytest
from scipy.stats import chisquare

from laser_contacts import AgentFrame
from laser_contacts import FlowTable
from laser_contacts import Geometry
from laser_contacts.agents import AgeGroup
from laser_contacts.commute import RECORD
from laser_contacts.commute import _map_ids
from laser_contacts.commute import assign_work_locations
from laser_contacts.commute import build_flow_table
from laser_contacts.commute import gravity_flow
from laser_contacts.commute import read_workerflow
from laser_contacts.commute import scale_factors
from laser_contacts.commute import working_population
from laser_contacts.commute import write_workerflow
from laser_contacts.demographics import Demographics
from laser_contacts.random import seed


def three_units():
    """Unit 0 owns communities 0 and 1, units 1 and 2 one community each; 2000 residents per unit."""
    return Demographics(start=[0, 2, 3, 4], population=[2000, 2000, 2000]), Geometry(4, 1)


def workers_at(count, home_i, age_group=AgeGroup.AGE30TO64):
    agents = AgentFrame(capacity=count, initial_count=count)
    agents.home_i[:] = home_i
    agents.home_j[:] = 0
    agents.age_group[:] = age_group
    return agents


def draw_for(r, nwork):
    """The uniform value that maps to integer draw `r` out of `nwork`."""
    return (r + 0.5) / nwork


class TestFlowTable(unittest.TestCase):
    def test_cumulative_rows_non_decreasing(self):
        prng = np.random.default_rng(20241017)
        table = FlowTable(prng.integers(0, 50, (6, 6))).cumulate()
        assert np.all(np.diff(table.flow, axis=1) >= 0)

    def test_destination(self):
        """Test the linear scan picks the first unit whose cumulative bound exceeds the draw."""
        table = FlowTable(np.array([[10, 20, 0], [0, 0, 0], [0, 0, 0]])).cumulate()
        assert np.array_equal(table.flow[0], [10, 30, 30])
        assert table.total(0) == 30
        assert table.destination(0, 25) == 1
        assert table.destination(0, 0) == 0
        assert table.destination(0, 9) == 0
        assert table.destination(0, 10) == 1
        assert table.destination(0, 29) == 1
        assert table.destination(0, 30) == -1
        assert table.destination(1, 0) == -1

    def test_scale(self):
        """Test that rows are scaled by 1.02 * 2000 * rint(pop / 2000) / pop and re-rounded."""
        table = FlowTable(np.array([[10, 20, 0], [0, 0, 30], [5, 5, 5]])).cumulate()
        table.scale([2000, 3000, 0])
        assert np.array_equal(table.flow[0], [10, 31, 31])
        assert np.array_equal(table.flow[1], [0, 0, 41])
        # rows with no population are left alone
        assert np.array_equal(table.flow[2], [5, 10, 15])
        with pytest.raises(ValueError, match="read-only"):
            table.flow[0, 0] = 0

    def test_scale_proportional(self):
        prng = np.random.default_rng(8675309)
        raw = prng.integers(0, 500, (5, 5))
        population = np.array([2000, 4000, 5000, 9000, 12000])
        table = FlowTable(raw).cumulate().scale(population)
        expected = np.cumsum(raw, axis=1)[:, -1] * scale_factors(population)
        assert np.allclose(table.flow[:, -1], expected, atol=0.5)

    def test_scale_order(self):
        with pytest.raises(ValueError, match="must be cumulative"):
            FlowTable(np.eye(2, dtype=np.int64)).scale([2000, 2000])
        table = FlowTable(np.eye(2, dtype=np.int64)).cumulate()
        with pytest.raises(ValueError, match="already cumulative"):
            table.cumulate()
        table.scale([2000, 2000])
        with pytest.raises(ValueError, match="already been scaled"):
            table.scale([2000, 2000])

    def test_bad_flow(self):
        with pytest.raises(ValueError, match="square"):
            FlowTable(np.zeros((2, 3)))
        with pytest.raises(ValueError, match="non-negative"):
            FlowTable(np.array([[1, -1], [0, 0]]))

    def test_held_rows_only(self):
        table = FlowTable(np.array([[1, 1], [1, 1]]), rows=np.array([True, False])).cumulate()
        assert np.array_equal(table.flow, [[1, 2], [1, 1]])


def test_working_population():
    assert np.array_equal(working_population([2000, 3000, 999, 0]), [1172, 2344, 0, 0])
    assert np.allclose(scale_factors([2000, 3000]), [1.02, 1.02 * 4000 / 3000])

    return


class TestWorkerFlowFile(unittest.TestCase):
    def test_read(self):
        """Test that records map raw ids to units, accumulate repeats, and skip unknown ids."""
        demographics = Demographics(start=[0, 1, 2, 3], population=[2000, 2000, 2000], unit_ids=[101, 202, 303])
        records = [(101, 202, 5), (101, 202, 7), (101, 303, 3), (999, 101, 4), (202, 101, 6), (303, 303, 2)]
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = Path(tmpdir) / "workerflow.bin"
            write_workerflow(filename, records)
            assert filename.stat().st_size == len(records) * RECORD.itemsize
            table = read_workerflow(filename, demographics)

        assert np.array_equal(table.flow, [[0, 12, 3], [6, 0, 0], [0, 0, 2]])
        assert not table.cumulative

    def test_map_ids(self):
        """Test that raw ids map through the demographics id lookup, whatever their order, and unknown ids map to -1."""
        demographics = Demographics(start=[0, 1, 2, 3], population=[2000, 2000, 2000], unit_ids=[303, 101, 202])
        units = _map_ids(np.array([101, 202, 303, 404, 101], dtype=np.int64), demographics)
        assert np.array_equal(units, [1, 2, 0, -1, 1])
        assert len(_map_ids(np.array([], dtype=np.int64), demographics)) == 0

    def test_read_filters(self):
        """Test that origins off this process and destinations without communities are dropped."""
        demographics = Demographics(start=[0, 1, 1, 2], population=[2000, 0, 2000], unit_on_proc=[True, True, False])
        records = [(0, 1, 5), (0, 2, 7), (2, 0, 3)]
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = Path(tmpdir) / "workerflow.bin"
            write_workerflow(filename, records)
            table = read_workerflow(filename, demographics)

        assert np.array_equal(table.flow, [[0, 0, 7], [0, 0, 0], [0, 0, 0]])
        assert np.array_equal(table.rows, [True, True, False])

    def test_missing_file(self):
        demographics, _ = three_units()
        with pytest.raises(FileNotFoundError, match="not found"):
            read_workerflow("no-such-workerflow.bin", demographics)

    def test_bad_size(self):
        demographics, _ = three_units()
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = Path(tmpdir) / "workerflow.bin"
            filename.write_bytes(b"\x00" * 13)
            with pytest.raises(ValueError, match="not a multiple of the 12 byte record size"):
                read_workerflow(filename, demographics)

    def test_build(self):
        demographics = Demographics(start=[0, 1, 2], population=[2000, 2000])
        with tempfile.TemporaryDirectory() as tmpdir:
            filename = Path(tmpdir) / "workerflow.bin"
            write_workerflow(filename, [(0, 0, 10), (0, 1, 20)])
            table = build_flow_table(filename, demographics)

        assert table.cumulative
        assert table.scaled
        assert np.array_equal(table.flow[0], [10, 31])


class TestAssignWorkLocations(unittest.TestCase):
    def setUp(self):
        self.demographics, self.geometry = three_units()
        self.nwork = int(working_population([2000])[0])
        # cumulative row for unit 0 is [10, 30, 30]
        self.flow = FlowTable(np.array([[10, 20, 0], [0, 5, 0], [0, 0, 5]])).cumulate()

    def test_draw_selects_unit(self):
        """Test that r = 25 against the cumulative row [10, 30, 30] lands in unit 1."""
        agents = workers_at(1, home_i=0)
        draws = np.array([[draw_for(25, self.nwork), 0.9, 0.0]])
        assigned = assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=draws)
        assert assigned[0]
        # unit 1's only community is community 2
        assert (agents.work_i[0], agents.work_j[0]) == (2, 0)

    def test_draw_beyond_total(self):
        """Test that a draw past the row total leaves the work location unchanged."""
        agents = workers_at(2, home_i=0)
        agents.work_i[1] = 3
        agents.work_j[1] = 0
        draws = np.array([[draw_for(30, self.nwork), 0.0, 0.0], [draw_for(500, self.nwork), 0.0, 0.0]])
        assigned = assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=draws)
        assert not np.any(assigned)
        assert agents.work_i[0] == -1
        assert agents.work_i[1] == 3

    def test_stay_in_home_community(self):
        """Test the 25% override to the agent's own community when commuting within the home unit."""
        agents = workers_at(2, home_i=1)
        draws = np.array([[draw_for(5, self.nwork), 0.1, 0.0], [draw_for(5, self.nwork), 0.5, 0.0]])
        assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=draws)
        # home community is 1; the uniform community draw of 0.0 would pick community 0
        assert agents.work_i[0] == 1
        assert agents.work_i[1] == 0

    def test_community_draw(self):
        agents = workers_at(1, home_i=0)
        draws = np.array([[draw_for(5, self.nwork), 0.9, 0.75]])
        assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=draws)
        assert agents.work_i[0] == 1

    def test_only_working_age(self):
        agents = workers_at(5, home_i=0)
        agents.age_group[:] = [AgeGroup.UNDER5, AgeGroup.AGE5TO17, AgeGroup.AGE18TO29, AgeGroup.AGE30TO64, AgeGroup.OVER65]
        draws = np.tile([draw_for(5, self.nwork), 0.9, 0.0], (5, 1))
        assigned = assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=draws)
        assert np.array_equal(assigned, [False, False, True, True, False])
        assert np.array_equal(agents.work_i, [-1, -1, 0, 0, -1])

    def test_no_working_population(self):
        """Test that residents of a unit too small to have workers are skipped."""
        demographics = Demographics(start=[0, 2, 3, 4], population=[900, 2000, 2000])
        agents = workers_at(1, home_i=0)
        assigned = assign_work_locations(agents, demographics, self.geometry, self.flow, draws=np.zeros((1, 3)))
        assert not assigned[0]

    def test_requires_cumulative(self):
        agents = workers_at(1, home_i=0)
        with pytest.raises(ValueError, match="cumulative"):
            assign_work_locations(agents, self.demographics, self.geometry, FlowTable(np.eye(3, dtype=np.int64)))

    def test_bad_draws(self):
        agents = workers_at(2, home_i=0)
        with pytest.raises(ValueError, match="draws must have shape"):
            assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=np.zeros((2, 2)))

    def test_table_and_assignment_agree(self):
        """Test that every draw lands in the unit FlowTable.destination() reports for it."""
        units = self.demographics.unit_grid(self.geometry)
        draws_r = np.arange(40)
        agents = workers_at(len(draws_r), home_i=0)
        draws = np.zeros((len(draws_r), 3))
        draws[:, 0] = [draw_for(r, self.nwork) for r in draws_r]
        draws[:, 1] = 0.9
        assigned = assign_work_locations(agents, self.demographics, self.geometry, self.flow, draws=draws)
        for k, r in enumerate(draws_r):
            expected = self.flow.destination(0, r)
            if expected < 0:
                assert not assigned[k]
            else:
                assert units[agents.work_i[k], agents.work_j[k]] == expected
        assert self.flow.destination(0, 25) == 1
        assert np.count_nonzero(assigned) == 30

    def test_destination_frequencies(self):
        """Test that destination units follow the flow row (chi-square, seeded draws)."""
        seed(20241017)
        flow = FlowTable(np.array([[172, 400, 600], [0, 1, 0], [0, 0, 1]])).cumulate()
        agents = workers_at(20_000, home_i=0)
        assigned = assign_work_locations(agents, self.demographics, self.geometry, flow)
        assert np.all(assigned)

        units = self.demographics.unit_grid(self.geometry)[agents.work_i, agents.work_j]
        observed = np.bincount(units, minlength=3)
        expected = np.array([172, 400, 600]) / self.nwork * agents.count
        _, pvalue = chisquare(observed, expected)
        assert pvalue > 0.001

    def test_deterministic(self):
        agents1 = workers_at(1_000, home_i=0)
        agents2 = workers_at(1_000, home_i=0)
        seed(31415)
        assign_work_locations(agents1, self.demographics, self.geometry, self.flow)
        seed(31415)
        assign_work_locations(agents2, self.demographics, self.geometry, self.flow)
        assert np.array_equal(agents1.work_i, agents2.work_i)


class TestGravityFlow(unittest.TestCase):
    def test_gravity_flow(self):
        demographics = Demographics.synthetic(4, 2, 1000)
        geometry = Geometry(4, 2)
        flow = gravity_flow(demographics, geometry, home_fraction=0.5)
        workers = working_population(demographics.population)

        assert flow.shape == (4, 4)
        assert flow.dtype == np.int64
        assert np.all(flow >= 0)
        assert np.array_equal(np.diag(flow), np.rint(0.5 * workers))
        assert np.allclose(flow.sum(axis=1), workers, atol=4)

    def test_single_unit(self):
        """Test that a lone unit keeps all of its workers at home."""
        demographics = Demographics.synthetic(1, 4, 500)
        flow = gravity_flow(demographics, Geometry(2, 2))
        assert np.array_equal(flow, [[1172]])

    def test_bad_home_fraction(self):
        demographics = Demographics.synthetic(1, 4, 500)
        with pytest.raises(ValueError, match="home_fraction"):
            gravity_flow(demographics, Geometry(2, 2), home_fraction=1.5)


if __name__ == "__main__":
    unittest.main()
