"""
Reconciler: maps ``(desired, observed)`` to an ordered list of actions.

The function is pure and total.  It never touches the store or the executor;
the controller loop is the only component that turns actions into side
effects.

Rules, applied in order:

* desired absent  -> delete every unit, newest first
* too many units  -> delete the excess, oldest first
* too few units   -> create the missing units from the desired template
* template drift  -> roll the remaining outdated units one at a time

Rolling updates respect the surge/unavailable budget of the desired spec:
with ``max_unavailable >= 1`` outdated units are updated in place (one unit
unavailable at a time); otherwise ``max_surge >= 1`` is guaranteed by
:class:`DesiredSpec` and each outdated unit is replaced by creating its
successor first and deleting it afterwards.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from controlmesh.core.entities import (
    CreateAction,
    DeleteAction,
    DesiredSpec,
    ObservedStatus,
    ReconcileAction,
    Unit,
    UpdateAction,
)

__all__ = ["reconcile", "is_converged", "outdated_units"]


def outdated_units(desired: DesiredSpec, units: Sequence[Unit]) -> List[Unit]:
    """Units whose template differs from the desired one, oldest first."""
    return [unit for unit in units if unit.template != desired.template]


def _rolling_update(desired: DesiredSpec, outdated: Sequence[Unit]) -> List[ReconcileAction]:
    actions: List[ReconcileAction] = []
    if desired.max_unavailable >= 1:
        for unit in outdated:
            actions.append(UpdateAction(unit_id=unit.unit_id, template=desired.template))
        return actions

    # Surge replacement: count oscillates between N and N + 1.
    for unit in outdated:
        actions.append(CreateAction(template=desired.template))
        actions.append(DeleteAction(unit_id=unit.unit_id))
    return actions


def reconcile(desired: Optional[DesiredSpec], observed: Optional[ObservedStatus]) -> List[ReconcileAction]:
    """Compute the convergence plan for one resource."""
    units = list(observed.units) if observed is not None else []

    if desired is None:
        return [DeleteAction(unit_id=unit.unit_id) for unit in reversed(units)]

    actions: List[ReconcileAction] = []
    target = desired.replica_count

    if len(units) > target:
        excess = len(units) - target
        actions.extend(DeleteAction(unit_id=unit.unit_id) for unit in units[:excess])
        units = units[excess:]
    elif len(units) < target:
        actions.extend(CreateAction(template=desired.template) for _ in range(target - len(units)))

    actions.extend(_rolling_update(desired, outdated_units(desired, units)))
    return actions


def is_converged(desired: Optional[DesiredSpec], observed: Optional[ObservedStatus]) -> bool:
    return not reconcile(desired, observed)
