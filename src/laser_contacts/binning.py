"""Spatial binning of agents into cells.

`build_bins()` sorts agent indices by the cell containing each agent and records,
for every cell `c`, the range `offsets[c]:offsets[c + 1]` of the sorted
permutation holding that cell's agents (a CSR layout). The interaction kernels
only ever look at agents within one range, so pairs in different cells never meet.

Bins must be rebuilt whenever agents move. `BinCache` keeps one index per
interaction context and rebuilds it when the tick, or the agents' generation
counter, changes.
"""

import numba as nb
import numpy as np

from laser_contacts.geometry import Geometry


class BinIndex:
    """Agents grouped by cell: `permutation[offsets[c]:offsets[c + 1]]` are the agents in cell `c`."""

    def __init__(self, permutation: np.ndarray, offsets: np.ndarray, cells: np.ndarray):
        self.permutation = permutation
        self.offsets = offsets
        self.cells = cells

        return

    @property
    def nbins(self) -> int:
        return len(self.offsets) - 1

    @property
    def nitems(self) -> int:
        return len(self.permutation)

    def range(self, cell: int) -> tuple[int, int]:
        """[start, stop) slice of `permutation` for `cell`."""
        if not 0 <= cell < self.nbins:
            raise IndexError(f"cell {cell} outside [0, {self.nbins})")
        return int(self.offsets[cell]), int(self.offsets[cell + 1])

    def agents_in(self, cell: int) -> np.ndarray:
        start, stop = self.range(cell)
        return self.permutation[start:stop]

    def validate(self) -> None:
        """
        Check the CSR invariants.

        Raises:

            ValueError: If offsets are not a non-decreasing partition of [0, nitems)
                        or the permutation does not hold each agent exactly once.
        """

        if self.nbins < 0 or self.offsets[0] != 0 or self.offsets[-1] != self.nitems:
            raise ValueError(f"bin offsets do not span [0, {self.nitems}) ({self.offsets[0]=}, {self.offsets[-1]=})")
        if np.any(np.diff(self.offsets) < 0):
            raise ValueError("bin offsets must be non-decreasing")
        if not np.array_equal(np.sort(self.permutation), np.arange(self.nitems)):
            raise ValueError("bin permutation must contain every agent index exactly once")

        return


@nb.njit(
    (nb.float32[:], nb.float32[:], nb.float64, nb.float64, nb.float64, nb.float64, nb.int64, nb.int64, nb.int64[:]),
    parallel=True,
    nogil=True,
    cache=True,
)
def _nb_cells(x, y, xlo, ylo, dxi, dyi, nx, ny, cells):  # pragma: no cover
    for k in nb.prange(len(x)):
        i = np.int64(np.floor((x[k] - xlo) * dxi))
        j = np.int64(np.floor((y[k] - ylo) * dyi))
        if (i < 0) or (i >= nx) or (j < 0) or (j >= ny):
            cells[k] = -1
        else:
            cells[k] = i + nx * j

    return


@nb.njit((nb.int64[:], nb.int64[:], nb.int64[:]), nogil=True, cache=True)
def _nb_counting_sort(cells, offsets, permutation):  # pragma: no cover
    cursor = offsets[:-1].copy()
    for k in range(len(cells)):
        c = cells[k]
        permutation[cursor[c]] = k
        cursor[c] += 1

    return


def compute_cells(agents, geometry: Geometry) -> np.ndarray:
    """
    Flat cell index of every active agent.

    Raises:

        IndexError: If any agent lies outside the domain.
    """

    cells = np.empty(agents.count, dtype=np.int64)
    _nb_cells(
        np.ascontiguousarray(agents.x),
        np.ascontiguousarray(agents.y),
        geometry.lo[0],
        geometry.lo[1],
        geometry.dxi[0],
        geometry.dxi[1],
        geometry.nx,
        geometry.ny,
        cells,
    )
    outside = np.nonzero(cells < 0)[0]
    if len(outside):
        k = outside[0]
        raise IndexError(f"agent {k} at ({agents.x[k]}, {agents.y[k]}) is outside {geometry} ({len(outside)} agent(s) out of bounds)")

    return cells


def build_bins(agents, geometry: Geometry, bin_size: int = 1) -> BinIndex:
    """
    Sort agents into one bin per cell.

    Parameters:

        agents (AgentFrame): Population to bin; only positions are read.
        geometry (Geometry): Domain cell layout.
        bin_size (int): Cells per bin along each axis; only 1 is supported.

    Returns:

        BinIndex: The permutation / offsets index.
    """

    if bin_size != 1:
        raise ValueError(f"bins cover exactly one cell (bin_size=1), got {bin_size=}")

    cells = compute_cells(agents, geometry)
    counts = np.bincount(cells, minlength=geometry.ncells)
    offsets = np.zeros(geometry.ncells + 1, dtype=np.int64)
    np.cumsum(counts, out=offsets[1:])
    permutation = np.empty(len(cells), dtype=np.int64)
    _nb_counting_sort(cells, offsets, permutation)

    return BinIndex(permutation, offsets, cells)


class BinCache:
    """Bin indices keyed by interaction context, rebuilt when the tick or agent positions change."""

    def __init__(self, geometry: Geometry, bin_size: int = 1):
        self.geometry = geometry
        self.bin_size = bin_size
        self._bins = {}
        self.builds = 0

        return

    def get(self, agents, context: str, tick: int) -> BinIndex:
        key = (tick, agents.generation, agents.count)
        cached = self._bins.get(context)
        if cached is None or cached[0] != key:
            cached = (key, build_bins(agents, self.geometry, self.bin_size))
            self._bins[context] = cached
            self.builds += 1

        return cached[1]

    def invalidate(self, context: str = None) -> None:
        if context is None:
            self._bins.clear()
        else:
            self._bins.pop(context, None)

        return
