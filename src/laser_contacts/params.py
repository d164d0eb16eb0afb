"""Default model and disease parameters, validation, and packing for the compiled kernels."""

from pathlib import Path

import numpy as np

from laser_contacts import transmission as tx
from laser_contacts.agents import NUM_AGE_GROUPS
from laser_contacts.propertyset import PropertySet

# Per age group: under 5, 5-17, 18-29, 30-64, 65+
XMIT_COMM = [0.0000125, 0.0000375, 0.00010, 0.00010, 0.00015]
XMIT_HOOD = [0.00005, 0.00015, 0.00040, 0.00040, 0.00060]
# Children not in school mix more in their community and neighborhood.
SCHOOL_CLOSED_CHILD_MULTIPLIER = 2.0

RATE_TABLES = ("xmit_comm", "xmit_comm_SC", "xmit_hood", "xmit_hood_SC")


def get_disease_parameters(**overrides) -> PropertySet:
    """Return a PropertySet with the default parameters for one disease, updated with `overrides`."""

    child = np.array([SCHOOL_CLOSED_CHILD_MULTIPLIER] * 2 + [1.0] * (NUM_AGE_GROUPS - 2))
    disease = PropertySet(
        {
            "name": "default",
            "infect": 1.0,
            "vac_eff": 1.0,
            "xmit_comm": list(XMIT_COMM),
            "xmit_comm_SC": list(np.array(XMIT_COMM) * child),
            "xmit_hood": list(XMIT_HOOD),
            "xmit_hood_SC": list(np.array(XMIT_HOOD) * child),
            "xmit_work": 0.0575,
            "incubation_length": 3.0,
        }
    )
    disease <<= overrides

    return disease


def get_default_parameters() -> PropertySet:
    """Return the default model parameters (one disease, small demo domain)."""

    return PropertySet(
        {
            "nticks": 10,
            "seed": 20241017,
            "size": [8, 8],
            "communities_per_unit": 4,
            "agents_per_community": 500,
            "nborhoods_per_community": 4,
            "workgroup_size": 20,
            "initial_infected": 10,
            "diseases": [get_disease_parameters()],
            "workerflow": None,
            "concurrent": False,
            "verbose": False,
        }
    )


def load_parameters(filename=None, overrides=None) -> PropertySet:
    """
    Build model parameters from the defaults, an optional JSON file, and optional overrides.

    Disease entries in the file are laid over the disease defaults individually.

    Raises:

        FileNotFoundError: If `filename` does not exist.
        ValueError: If the resulting parameters are invalid (see `validate()`).
    """

    params = get_default_parameters()
    if filename is not None:
        path = Path(filename)
        if not path.exists():
            raise FileNotFoundError(f"parameter file {path} not found")
        params |= PropertySet.load(path)
    if overrides:
        params |= {key: value for key, value in overrides.items() if value is not None}

    params.diseases = [get_disease_parameters() | disease for disease in params.diseases]
    validate(params)

    return params


def validate(params: PropertySet) -> None:
    """
    Check parameter values.

    Raises:

        ValueError: Describing the first offending value.
    """

    if int(params.nticks) < 0:
        raise ValueError(f"nticks must be non-negative ({params.nticks=})")
    if len(params.size) != 2 or min(params.size) <= 0:
        raise ValueError(f"size must be two positive integers ({params.size=})")
    for name in ("communities_per_unit", "agents_per_community", "nborhoods_per_community", "workgroup_size"):
        if int(params[name]) <= 0:
            raise ValueError(f"{name} must be positive ({params[name]=})")
    if int(params.initial_infected) < 0:
        raise ValueError(f"initial_infected must be non-negative ({params.initial_infected=})")
    if len(params.diseases) == 0:
        raise ValueError("at least one disease must be configured")
    for disease in params.diseases:
        validate_disease(disease)

    return


def validate_disease(disease: PropertySet) -> None:
    name = disease.get("name", "?")
    for key in ("infect", "vac_eff", "xmit_work"):
        if not 0.0 <= float(disease[key]) <= 1.0:
            raise ValueError(f"disease '{name}': {key} must be in [0, 1] ({disease[key]=})")
    for key in RATE_TABLES:
        rates = np.asarray(disease[key], dtype=np.float64)
        if rates.shape != (NUM_AGE_GROUPS,):
            raise ValueError(f"disease '{name}': {key} must have {NUM_AGE_GROUPS} entries ({rates.shape=})")
        if np.any(rates < 0.0) or np.any(rates > 1.0):
            raise ValueError(f"disease '{name}': {key} entries must be in [0, 1]")
    if float(disease.incubation_length) < 0.0:
        raise ValueError(f"disease '{name}': incubation_length must be non-negative ({disease.incubation_length=})")

    return


def pack_disease(disease: PropertySet) -> np.ndarray:
    """Flatten one disease's parameters into the float64 layout read by `laser_contacts.transmission`."""

    parm = np.zeros(tx.PACKED_LENGTH, dtype=np.float64)
    parm[tx.INFECT] = disease.infect
    parm[tx.VAC_EFF] = disease.vac_eff
    parm[tx.XMIT_COMM : tx.XMIT_COMM + NUM_AGE_GROUPS] = disease.xmit_comm
    parm[tx.XMIT_COMM_SC : tx.XMIT_COMM_SC + NUM_AGE_GROUPS] = disease.xmit_comm_SC
    parm[tx.XMIT_HOOD : tx.XMIT_HOOD + NUM_AGE_GROUPS] = disease.xmit_hood
    parm[tx.XMIT_HOOD_SC : tx.XMIT_HOOD_SC + NUM_AGE_GROUPS] = disease.xmit_hood_SC
    parm[tx.XMIT_WORK] = disease.xmit_work
    parm[tx.INCUBATION_LENGTH] = disease.incubation_length

    return parm


def disease_parameters(params: PropertySet, d: int) -> np.ndarray:
    """Packed parameters for disease index `d`."""
    if not 0 <= d < len(params.diseases):
        raise IndexError(f"disease index {d} outside [0, {len(params.diseases)})")
    return pack_disease(params.diseases[d])
