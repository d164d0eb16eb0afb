"""
Per-pair transmission rules for the neighborhood/community and workplace contexts.

Each rule takes the index of an infectious agent first and a susceptible agent
second and returns the probability that the susceptible agent *escapes*
infection from this one contact. Callers multiply the factor into the
susceptible agent's accumulator; the rules themselves write nothing.

Disease parameters arrive packed into a flat float64 array (see
`laser_contacts.params.pack_disease()`), indexed with the offsets below.

The rules are Numba compiled so they can be called from inside the `prange`
kernels in `laser_contacts.interaction`, and they also work from plain Python.
"""

import numba as nb
import numpy as np

from laser_contacts.agents import NUM_AGE_GROUPS

# Offsets into a packed disease parameter array.
INFECT = 0
VAC_EFF = 1
XMIT_COMM = 2
XMIT_COMM_SC = XMIT_COMM + NUM_AGE_GROUPS
XMIT_HOOD = XMIT_COMM_SC + NUM_AGE_GROUPS
XMIT_HOOD_SC = XMIT_HOOD + NUM_AGE_GROUPS
XMIT_WORK = XMIT_HOOD_SC + NUM_AGE_GROUPS
INCUBATION_LENGTH = XMIT_WORK + 1
PACKED_LENGTH = INCUBATION_LENGTH + 1

# Interaction contexts, as passed to the compiled kernels.
NBORHOOD = 0
WORK = 1


@nb.njit(nogil=True, cache=True)
def survival_factor(infect, rate, scale):
    """Probability of escaping one contact with per-contact transmission `infect * rate * scale`."""
    return 1.0 - infect * rate * scale


@nb.njit(nogil=True, cache=True)
def neighborhood_factor(j, i, age_group, nborhood, school, withdrawn, parm, social_scale):
    """
    Survival factor for susceptible agent `i` after contact with infectious agent `j` in their community.

    Community contact always applies; neighborhood contact applies on top when both
    live in the same neighborhood. Rates are per age group of the susceptible agent
    and switch to the school-closed ("_SC") tables when the infectious agent is not
    attending school today (negative school id).
    """

    if withdrawn[j] or withdrawn[i]:
        return 1.0

    infect = parm[INFECT] * parm[VAC_EFF]
    age = age_group[i]
    out_of_school = school[j] < 0

    prob = 1.0
    if out_of_school:
        prob *= survival_factor(infect, parm[XMIT_COMM_SC + age], social_scale)
    else:
        prob *= survival_factor(infect, parm[XMIT_COMM + age], social_scale)

    if nborhood[i] == nborhood[j]:
        if out_of_school:
            prob *= survival_factor(infect, parm[XMIT_HOOD_SC + age], social_scale)
        else:
            prob *= survival_factor(infect, parm[XMIT_HOOD + age], social_scale)

    return prob


@nb.njit(nogil=True, cache=True)
def workplace_factor(j, i, workgroup, work_i, withdrawn, parm, work_scale):
    """
    Survival factor for susceptible agent `i` after contact with infectious agent `j` at work.

    Only coworkers count: `j` must be at work (workgroup > 0, work location assigned)
    and `i` must be at work in the same workgroup.
    """

    if withdrawn[j] or withdrawn[i]:
        return 1.0

    infect = parm[INFECT] * parm[VAC_EFF]

    prob = 1.0
    if (workgroup[j] > 0) and (work_i[j] >= 0):
        if (work_i[i] >= 0) and (workgroup[i] == workgroup[j]):
            prob *= survival_factor(infect, parm[XMIT_WORK], work_scale)

    return prob


@nb.njit(nogil=True, cache=True)
def context_factor(context, j, i, age_group, nborhood, school, withdrawn, workgroup, work_i, parm, scale):
    """Dispatch to the rule for `context` (NBORHOOD or WORK)."""
    if context == NBORHOOD:
        return neighborhood_factor(j, i, age_group, nborhood, school, withdrawn, parm, scale)
    return workplace_factor(j, i, workgroup, work_i, withdrawn, parm, scale)


def pair_factor(agents, context: int, j: int, i: int, parm: np.ndarray, scale: float = 1.0) -> float:
    """Convenience wrapper evaluating one rule directly on an AgentFrame."""
    return float(
        context_factor(
            context,
            j,
            i,
            agents.age_group,
            agents.nborhood,
            agents.school,
            agents.withdrawn,
            agents.workgroup,
            agents.work_i,
            parm,
            scale,
        )
    )
