"""Rectangular cell geometry for the simulation domain.

Cells are addressed either by (i, j) coordinates or by a flat offset
`k = i + nx * j` (x varies fastest). One community occupies one cell.
"""

import math

import numpy as np


class Geometry:
    """An nx by ny grid of equal cells spanning [lo, hi) in each dimension."""

    def __init__(self, nx: int, ny: int, lo=(0.0, 0.0), hi=None):
        if nx <= 0 or ny <= 0:
            raise ValueError(f"Geometry must have at least one cell in each direction ({nx=}, {ny=})")
        if hi is None:
            hi = (float(nx), float(ny))
        if not (hi[0] > lo[0] and hi[1] > lo[1]):
            raise ValueError(f"Geometry upper bounds must exceed lower bounds ({lo=}, {hi=})")

        self.nx = int(nx)
        self.ny = int(ny)
        self.lo = (float(lo[0]), float(lo[1]))
        self.hi = (float(hi[0]), float(hi[1]))
        self.dx = ((self.hi[0] - self.lo[0]) / self.nx, (self.hi[1] - self.lo[1]) / self.ny)
        self.dxi = (1.0 / self.dx[0], 1.0 / self.dx[1])

        return

    @classmethod
    def for_communities(cls, ncommunity: int) -> "Geometry":
        """
        Smallest near-square grid on the unit box with more cells than `ncommunity`.

        Starts from floor(sqrt(n)) on a side and widens in x until nx * ny > n.
        """
        if ncommunity <= 0:
            raise ValueError(f"Number of communities must be positive, got {ncommunity}")
        side = max(int(math.floor(math.sqrt(ncommunity))), 1)
        nx = ny = side
        while nx * ny <= ncommunity:
            nx += 1

        return cls(nx, ny, lo=(0.0, 0.0), hi=(1.0, 1.0))

    @property
    def ncells(self) -> int:
        return self.nx * self.ny

    @property
    def shape(self) -> tuple:
        return (self.nx, self.ny)

    def offset(self, i, j):
        """Flat cell offset of cell (i, j)."""
        return i + self.nx * j

    def at_offset(self, k):
        """(i, j) coordinates of flat cell offset `k`."""
        return k % self.nx, k // self.nx

    def cell_of(self, x, y):
        """(i, j) cell coordinates containing position (x, y); not bounds checked."""
        i = np.floor((np.asarray(x, dtype=np.float64) - self.lo[0]) * self.dxi[0]).astype(np.int64)
        j = np.floor((np.asarray(y, dtype=np.float64) - self.lo[1]) * self.dxi[1]).astype(np.int64)
        return i, j

    def cell_center(self, i, j):
        """Position of the centre of cell (i, j)."""
        x = self.lo[0] + (np.asarray(i) + 0.5) * self.dx[0]
        y = self.lo[1] + (np.asarray(j) + 0.5) * self.dx[1]
        return x, y

    def __repr__(self) -> str:
        return f"Geometry(nx={self.nx}, ny={self.ny}, lo={self.lo}, hi={self.hi})"
