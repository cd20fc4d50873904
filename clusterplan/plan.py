from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from tabulate import tabulate

from clusterplan.errors import CyclicDependencyError, StateError
from clusterplan.expressions import Unknown, is_known, join_parts
from clusterplan.graph import DependencyGraph
from clusterplan.state import State

if TYPE_CHECKING:
    from clusterplan.resolver import ResolvedConfiguration

PLAN_FORMAT_VERSION = "1.0"


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


ACTION_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.DELETE: "-",
    Action.NOOP: " ",
}


@dataclass
class PlannedChange:
    """
    Represents the operation the apply engine performs on one resource.
    """

    address: str
    type: str
    name: str
    action: Action
    # The recorded attributes, None if the resource does not exist yet
    before: Optional[Dict[str, Any]] = None
    # The desired attributes, None if the resource is deleted
    after: Optional[Dict[str, Any]] = None
    # Desired attribute keys whose value differs from, or is not yet known against, the record
    changed: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    # Attribute keys masked when the plan is serialized
    sensitive: List[str] = field(default_factory=list)


@dataclass
class PlannedOutput:
    value: Any
    sensitive: bool = False


@dataclass
class Plan:
    """
    An ordered list of changes. Every change comes after the changes to the
    resources it depends on, and deletes come before anything that replaces them.
    """

    changes: List[PlannedChange]
    outputs: Dict[str, PlannedOutput] = field(default_factory=dict)
    destroy: bool = False

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "to_add": sum(1 for c in self.changes if c.action == Action.CREATE),
            "to_change": sum(1 for c in self.changes if c.action == Action.UPDATE),
            "to_destroy": sum(1 for c in self.changes if c.action == Action.DELETE),
        }

    @property
    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP for c in self.changes)

    def change_for(self, address: str) -> Optional[PlannedChange]:
        for change in self.changes:
            if change.address == address:
                return change
        return None

    def to_dict(self) -> Dict[str, Any]:
        """
        Serializes the plan for the apply engine. Unknown values become
        ``{"unknown": "<expression>"}``. Sensitive output values and attributes fed by
        sensitive variables are replaced with ``{"sensitive": true}``.
        """
        return {
            "format_version": PLAN_FORMAT_VERSION,
            "destroy": self.destroy,
            "changes": [
                {
                    "address": c.address,
                    "type": c.type,
                    "name": c.name,
                    "action": c.action.value,
                    "before": serialize_value(mask_keys(c.before, c.sensitive)),
                    "after": serialize_value(mask_keys(c.after, c.sensitive)),
                    "changed": c.changed,
                    "dependencies": c.dependencies,
                    "sensitive": c.sensitive,
                }
                for c in self.changes
            ],
            "outputs": {
                name: (
                    {"sensitive": True}
                    if output.sensitive
                    else {"sensitive": False, "value": serialize_value(output.value)}
                )
                for name, output in self.outputs.items()
            },
            "summary": self.summary,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    def render(self) -> str:
        """
        Renders the changes as a table, followed by a one-line summary.
        """
        rows = [
            [ACTION_SYMBOLS[c.action], c.address, c.action.value, ", ".join(c.changed)]
            for c in self.changes
            if c.action != Action.NOOP
        ]
        summary = self.summary
        footer = (
            f"Plan: {summary['to_add']} to add, {summary['to_change']} to change, "
            f"{summary['to_destroy']} to destroy."
        )
        if not rows:
            return "No changes. The recorded state matches the configuration."
        table = tabulate(rows, headers=["", "Resource", "Action", "Attributes"])
        return f"{table}\n\n{footer}"


def serialize_value(value: Any) -> Any:
    if isinstance(value, Unknown):
        return {"unknown": value.expression}
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def mask_keys(
    attributes: Optional[Dict[str, Any]], keys: List[str]
) -> Optional[Dict[str, Any]]:
    if attributes is None or not keys:
        return attributes
    return {
        k: {"sensitive": True} if k in keys else v for k, v in attributes.items()
    }


def display_value(value: Any, sensitive: bool = False) -> Any:
    """
    Returns a value as shown to a person: masked if sensitive, with Unknowns spelled out.
    """
    if sensitive:
        return "(sensitive)"
    if isinstance(value, Unknown):
        return str(value)
    if isinstance(value, dict):
        return {k: display_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [display_value(v) for v in value]
    return value


_MISSING = object()

Lookup = Callable[[str, Tuple[str, ...]], Any]


def materialize(value: Any, lookup: Lookup) -> Any:
    """
    Replaces Unknowns whose value the recorded state already holds.

    Args:
        value (Any): A resolved value.
        lookup (Lookup): Returns the recorded value of an attribute, or ``_MISSING``.
    """
    if isinstance(value, Unknown):
        if value.parts:
            return join_parts(
                [materialize(p, lookup) for p in value.parts], value.expression
            )
        if value.address is not None:
            # An empty path stands for every recorded attribute of the resource
            recorded = lookup(value.address, value.path)
            if recorded is not _MISSING:
                return recorded
        return value
    if isinstance(value, dict):
        return {k: materialize(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [materialize(v, lookup) for v in value]
    return value


def _state_order(state: State, extra_edges: Dict[str, List[str]]) -> List[str]:
    graph = DependencyGraph()
    for address, resource in state.resources.items():
        graph.add_node(address)
        for dep in resource.dependencies + extra_edges.get(address, []):
            if dep in state.resources:
                graph.add_edge(address, dep)
    try:
        return graph.topological_order()
    except CyclicDependencyError as e:
        raise StateError(f"Recorded state has a dependency cycle: {e}")


def build_plan(
    resolved: "ResolvedConfiguration", state: State, destroy: bool = False
) -> Plan:
    """
    Diffs the desired resources against recorded state.

    A desired resource missing from the state is created. A recorded one is updated
    when a desired attribute differs from the recorded value, or is not known until
    apply. Recorded resources no longer declared are deleted, dependents first.

    An Unknown that refers to a resource left unchanged takes the value recorded
    for it, so a dependent resource does not show a spurious update.

    Args:
        resolved (ResolvedConfiguration): The desired resource graph.
        state (State): The recorded state.
        destroy (bool): Delete every recorded resource instead.

    Returns:
        Plan: The ordered plan.
    """
    desired_edges = {a: r.dependencies for a, r in resolved.resources.items()}

    if destroy:
        order = list(reversed(_state_order(state, desired_edges)))
        changes = [
            PlannedChange(
                address=address,
                type=state.resources[address].type,
                name=state.resources[address].name,
                action=Action.DELETE,
                before=state.resources[address].attributes,
                dependencies=state.resources[address].dependencies,
            )
            for address in order
        ]
        return Plan(changes=changes, destroy=True)

    unchanged: Dict[str, bool] = {}

    def lookup(address: str, path: Tuple[str, ...]) -> Any:
        if not unchanged.get(address):
            return _MISSING
        try:
            return state.attribute(address, path)
        except (KeyError, IndexError, TypeError):
            return _MISSING

    orphans = [a for a in state.resources if a not in resolved.resources]
    changes = [
        PlannedChange(
            address=address,
            type=state.resources[address].type,
            name=state.resources[address].name,
            action=Action.DELETE,
            before=state.resources[address].attributes,
            dependencies=state.resources[address].dependencies,
        )
        for address in reversed(_state_order(state, {}))
        if address in orphans
    ]

    for address in resolved.order:
        resource = resolved.resources[address]
        after = materialize(resource.attributes, lookup)
        recorded = state.get(address)

        if recorded is None:
            action = Action.CREATE
            changed = sorted(after)
            before = None
        else:
            changed = [
                key
                for key in sorted(after)
                if not is_known(after[key])
                or after[key] != recorded.attributes.get(key, _MISSING)
            ]
            action = Action.UPDATE if changed else Action.NOOP
            before = recorded.attributes

        unchanged[address] = action == Action.NOOP
        changes.append(
            PlannedChange(
                address=address,
                type=resource.type,
                name=resource.name,
                action=action,
                before=before,
                after=after,
                changed=changed,
                dependencies=resource.dependencies,
                sensitive=resource.sensitive,
            )
        )

    outputs = {
        name: PlannedOutput(
            value=materialize(output.value, lookup), sensitive=output.sensitive
        )
        for name, output in resolved.outputs.items()
    }

    return Plan(changes=changes, outputs=outputs)
