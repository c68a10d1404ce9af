"""Rendering helpers for friendly demo output."""

from __future__ import annotations

from typing import Any, Dict, Iterable


def describe_status(status: Dict[str, Any]) -> str:
    """One-line summary of a ``ResourceStatus.to_dict()`` payload."""
    desired = status.get("desired") or {}
    observed = status.get("observed") or {}
    template = desired.get("template") or {}
    wanted = desired.get("replica_count", 0) if desired else 0
    have = observed.get("count", 0) if observed else 0
    image = f"{template.get('image')}:{template.get('tag')}" if template else "<deleting>"
    line = f"{status.get('id')} {have}/{wanted} image={image} phase={status.get('phase')}"
    if status.get("degraded"):
        line += f" DEGRADED ({status.get('last_error')})"
    elif status.get("ready"):
        line += " ready"
    return line


def pretty_print_statuses(statuses: Iterable[Dict[str, Any]], title: str) -> None:
    print(title)
    empty = True
    for status in statuses:
        empty = False
        print(f"  - {describe_status(status)}")
        for unit in (status.get("observed") or {}).get("units", []):
            template = unit.get("template") or {}
            print(f"    • {unit.get('unit_id')} #{unit.get('sequence')} {template.get('image')}:{template.get('tag')}")
    if empty:
        print("  - 无资源")
    print()
