"""
agents.py

Column-store container for the simulated population.

An AgentFrame holds one NumPy array per agent property. Scalar properties are 1-D
arrays of length `capacity`; per-disease properties are 2-D arrays of shape
(ndiseases, capacity). Accessing a property by name returns a view of the active
entries only, i.e., `agents.age_group` is `agents._age_group[0:agents.count]`, and
the view can be handed directly to Numba compiled kernels.

Usage Example:
    ```python
    agents = AgentFrame(capacity=1000, ndiseases=1)
    istart, iend = agents.add(250)
    agents.age_group[istart:iend] = 3
    agents.status[0, istart:iend] = Status.SUSCEPTIBLE
    ```
"""

from enum import IntEnum

import numpy as np


class Status(IntEnum):
    """Per-disease infection status of an agent."""

    NEVER = 0
    INFECTED = 1
    IMMUNE = 2
    SUSCEPTIBLE = 3
    DEAD = 4


class AgeGroup(IntEnum):
    UNDER5 = 0
    AGE5TO17 = 1
    AGE18TO29 = 2
    AGE30TO64 = 3
    OVER65 = 4


NUM_AGE_GROUPS = len(AgeGroup)
WORKING_AGE_GROUPS = (AgeGroup.AGE18TO29, AgeGroup.AGE30TO64)

# name, dtype, default
SCALAR_PROPERTIES = (
    ("x", np.float32, 0.0),
    ("y", np.float32, 0.0),
    ("home_i", np.int32, 0),
    ("home_j", np.int32, 0),
    ("work_i", np.int32, -1),
    ("work_j", np.int32, -1),
    ("age_group", np.int32, 0),
    ("nborhood", np.int32, 0),
    ("school", np.int32, -1),
    ("workgroup", np.int32, 0),
    ("withdrawn", np.int32, 0),
)

DISEASE_PROPERTIES = (
    ("status", np.int8, Status.NEVER),
    ("disease_counter", np.float32, 0.0),
    ("prob", np.float32, 1.0),
)


class AgentFrame:
    """Dynamically sized agent population with named scalar and per-disease properties."""

    def __init__(self, capacity: int, ndiseases: int = 1, initial_count: int = 0):
        """
        Initialize an AgentFrame with the standard agent properties allocated.

        Parameters:
            capacity (int): Maximum number of agents. Must be a positive integer.
            ndiseases (int): Number of diseases tracked per agent. Must be a positive integer.
            initial_count (int): Number of agents active immediately. Must be <= capacity.

        Raises:
            ValueError: If any of the sizes are out of range.
        """
        if not isinstance(capacity, (int, np.integer)) or capacity <= 0:
            raise ValueError(f"Capacity must be a positive integer, got {capacity}.")
        if not isinstance(ndiseases, (int, np.integer)) or ndiseases <= 0:
            raise ValueError(f"Number of diseases must be a positive integer, got {ndiseases}.")
        if not isinstance(initial_count, (int, np.integer)) or not (0 <= initial_count <= capacity):
            raise ValueError(f"Initial count must be in [0, {capacity}], got {initial_count}.")

        self._count = int(initial_count)
        self._capacity = int(capacity)
        self._ndiseases = int(ndiseases)
        self._generation = 0
        self._properties = {}

        for name, dtype, default in SCALAR_PROPERTIES:
            self.add_scalar_property(name, dtype=dtype, default=default)
        for name, dtype, default in DISEASE_PROPERTIES:
            self.add_disease_property(name, dtype=dtype, default=default)

        return

    def add_scalar_property(self, name: str, dtype=np.int32, default=0) -> None:
        """Add a 1-D property with one entry per agent."""

        if name in self._properties or hasattr(self, name):
            raise ValueError(f"Property '{name}' already exists in AgentFrame.")

        self._properties[name] = np.full(self._capacity, default, dtype=dtype)
        self.__dict__[f"_{name}"] = self._properties[name]

        return

    def add_disease_property(self, name: str, dtype=np.float32, default=0) -> None:
        """Add a 2-D property with one row per disease and one column per agent."""

        if name in self._properties or hasattr(self, name):
            raise ValueError(f"Property '{name}' already exists in AgentFrame.")

        self._properties[name] = np.full((self._ndiseases, self._capacity), default, dtype=dtype)
        self.__dict__[f"_{name}"] = self._properties[name]

        return

    def __getattr__(self, name: str):
        properties = self.__dict__.get("_properties", {})
        if name in properties:
            backing = properties[name]
            return backing[0 : self._count] if backing.ndim == 1 else backing[:, 0 : self._count]
        raise AttributeError(f"'AgentFrame' object has no attribute '{name}'")

    def __setattr__(self, name, value):
        if ("_properties" in self.__dict__) and (name in self._properties):
            raise RuntimeError(f"Cannot reassign property '{name}'. Modify the array in place instead, e.g., agents.{name}[:] = values")
        super().__setattr__(name, value)

    @property
    def count(self) -> int:
        return self._count

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ndiseases(self) -> int:
        return self._ndiseases

    @property
    def generation(self) -> int:
        """Counter bumped by `moved()`; cached spatial indices built at an older generation are stale."""
        return self._generation

    def __len__(self) -> int:
        return self._count

    def add(self, count: int) -> tuple[int, int]:
        """
        Activate `count` more agents.

        Returns:
            tuple[int, int]: The [start, end) indices of the new agents.

        Raises:
            ValueError: If the new total would exceed capacity.
        """

        if not self._count + count <= self._capacity:
            raise ValueError(f"AgentFrame.add() exceeds capacity ({self._count=} + {count=} > {self._capacity=})")

        i = self._count
        self._count += int(count)
        self._generation += 1

        return i, self._count

    def moved(self) -> None:
        """Record that agent positions changed so spatial indices get rebuilt."""
        self._generation += 1

        return

    def place(self, indices, cell_i, cell_j, geometry) -> None:
        """Put the given agents at the centres of cells (cell_i, cell_j) and mark positions changed."""

        x, y = geometry.cell_center(np.asarray(cell_i), np.asarray(cell_j))
        self.x[indices] = x
        self.y[indices] = y
        self.moved()

        return

    def susceptible(self, disease: int) -> np.ndarray:
        """Boolean mask of agents whose accumulator may be updated for `disease`."""
        status = self.status[disease]
        return (status == Status.NEVER) | (status == Status.SUSCEPTIBLE)

    def infectious(self, disease: int, incubation_length: float) -> np.ndarray:
        """Boolean mask of agents who can transmit `disease` (infected and past incubation)."""
        return (self.status[disease] == Status.INFECTED) & (self.disease_counter[disease] >= incubation_length)

    def counts(self, disease: int) -> np.ndarray:
        """Number of agents in each Status for `disease`, indexed by Status value."""
        return np.bincount(self.status[disease], minlength=len(Status))
