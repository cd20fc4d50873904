import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest

from clusterplan.errors import StateError
from clusterplan.expressions import Unknown
from clusterplan.plan import Action, Plan, PlannedChange, display_value, serialize_value
from clusterplan.resolver import Resolver
from clusterplan.state import State

WriteDocs = Callable[..., Path]

NETWORK = """
variables:
  cluster_name:
    type: string
    default: demo
  token:
    type: string
    default: s3cr3t
    sensitive: true
resources:
  - type: network
    name: main
    attributes:
      cidr_block: 10.0.0.0/16
  - type: subnet
    name: public
    attributes:
      vpc_id: ${network.main.id}
      name: ${var.cluster_name}-public
outputs:
  vpc_id:
    value: ${network.main.id}
  token:
    value: ${var.token}
    sensitive: true
"""


def make_plan(
    write_docs: WriteDocs,
    state: Optional[Dict[str, Any]] = None,
    destroy: bool = False,
    content: str = NETWORK,
) -> Plan:
    resolver = Resolver.load([write_docs({"main.yaml": content})])
    resolver.bind_inputs(environ={})
    resolver.validate()
    resolver.resolve_references()
    return resolver.plan(State(**(state or {})), destroy=destroy)


def applied_state(**overrides: Dict[str, Any]) -> Dict[str, Any]:
    resources: Dict[str, Any] = {
        "network.main": {
            "type": "network",
            "name": "main",
            "attributes": {"id": "vpc-123", "cidr_block": "10.0.0.0/16"},
        },
        "subnet.public": {
            "type": "subnet",
            "name": "public",
            "attributes": {
                "id": "subnet-1",
                "vpc_id": "vpc-123",
                "name": "demo-public",
            },
            "dependencies": ["network.main"],
        },
    }
    resources.update(overrides)
    return {"resources": resources}


def test_plan_against_empty_state(write_docs: WriteDocs) -> None:
    plan = make_plan(write_docs)

    assert [(c.address, c.action) for c in plan.changes] == [
        ("network.main", Action.CREATE),
        ("subnet.public", Action.CREATE),
    ]
    subnet = plan.change_for("subnet.public")
    assert subnet.before is None
    assert subnet.changed == ["name", "vpc_id"]
    assert subnet.dependencies == ["network.main"]
    assert isinstance(subnet.after["vpc_id"], Unknown)
    assert plan.summary == {"to_add": 2, "to_change": 0, "to_destroy": 0}
    assert plan.has_changes
    assert isinstance(plan.outputs["vpc_id"].value, Unknown)


def test_plan_matching_state_is_noop(write_docs: WriteDocs) -> None:
    plan = make_plan(write_docs, applied_state())

    assert [c.action for c in plan.changes] == [Action.NOOP, Action.NOOP]
    assert not plan.has_changes
    # Values computed by the engine are read back from the unchanged resource
    assert plan.change_for("subnet.public").after["vpc_id"] == "vpc-123"
    assert plan.outputs["vpc_id"].value == "vpc-123"
    assert plan.render() == "No changes. The recorded state matches the configuration."


def test_plan_update(write_docs: WriteDocs) -> None:
    state = applied_state(
        **{
            "network.main": {
                "type": "network",
                "name": "main",
                "attributes": {"id": "vpc-123", "cidr_block": "10.1.0.0/16"},
            }
        }
    )
    plan = make_plan(write_docs, state)

    network = plan.change_for("network.main")
    assert network.action == Action.UPDATE
    assert network.changed == ["cidr_block"]

    # The network is changing, so its id is not known until apply
    subnet = plan.change_for("subnet.public")
    assert subnet.action == Action.UPDATE
    assert subnet.changed == ["vpc_id"]
    assert plan.summary == {"to_add": 0, "to_change": 2, "to_destroy": 0}


def test_plan_deletes_orphans_first(write_docs: WriteDocs) -> None:
    state = applied_state(
        **{
            "security_group.old": {
                "type": "security_group",
                "name": "old",
                "attributes": {"id": "sg-1"},
                "dependencies": ["network.main"],
            },
            "security_group_rule.old": {
                "type": "security_group_rule",
                "name": "old",
                "attributes": {"id": "sgr-1"},
                "dependencies": ["security_group.old"],
            },
        }
    )
    plan = make_plan(write_docs, state)

    assert [(c.address, c.action) for c in plan.changes] == [
        ("security_group_rule.old", Action.DELETE),
        ("security_group.old", Action.DELETE),
        ("network.main", Action.NOOP),
        ("subnet.public", Action.NOOP),
    ]
    deleted = plan.change_for("security_group.old")
    assert deleted.before == {"id": "sg-1"}
    assert deleted.after is None
    assert plan.summary["to_destroy"] == 2


def test_plan_destroy(write_docs: WriteDocs) -> None:
    plan = make_plan(write_docs, applied_state(), destroy=True)

    assert [(c.address, c.action) for c in plan.changes] == [
        ("subnet.public", Action.DELETE),
        ("network.main", Action.DELETE),
    ]
    assert plan.destroy
    assert plan.outputs == {}
    assert plan.summary == {"to_add": 0, "to_change": 0, "to_destroy": 2}


DESTROY_ORDER = """
resources:
  - type: cluster
    name: main
    attributes:
      subnet_id: ${subnet.a.id}
  - type: subnet
    name: a
"""


def test_plan_destroy_uses_declared_dependencies(write_docs: WriteDocs) -> None:
    # The recorded cluster does not list its dependency, the declaration does
    state = {
        "resources": {
            "cluster.main": {"type": "cluster", "name": "main"},
            "subnet.a": {"type": "subnet", "name": "a"},
        }
    }
    plan = make_plan(write_docs, state, destroy=True, content=DESTROY_ORDER)

    assert [c.address for c in plan.changes] == ["cluster.main", "subnet.a"]


def test_plan_state_cycle(write_docs: WriteDocs) -> None:
    state = applied_state(
        **{
            "subnet.a": {"type": "subnet", "name": "a", "dependencies": ["subnet.b"]},
            "subnet.b": {"type": "subnet", "name": "b", "dependencies": ["subnet.a"]},
        }
    )

    with pytest.raises(StateError, match="dependency cycle"):
        make_plan(write_docs, state)


def test_plan_is_deterministic(write_docs: WriteDocs) -> None:
    first = make_plan(write_docs, applied_state())
    second = make_plan(write_docs, applied_state())

    assert first == second
    assert first.to_json() == second.to_json()


def test_plan_to_dict(write_docs: WriteDocs) -> None:
    plan = make_plan(write_docs)
    data = json.loads(plan.to_json())

    assert data["format_version"] == "1.0"
    assert data["destroy"] is False
    assert data["summary"] == {"to_add": 2, "to_change": 0, "to_destroy": 0}
    assert data["changes"][1]["after"] == {
        "vpc_id": {"unknown": "network.main.id"},
        "name": "demo-public",
    }
    assert data["outputs"]["vpc_id"] == {
        "sensitive": False,
        "value": {"unknown": "network.main.id"},
    }
    assert data["outputs"]["token"] == {"sensitive": True}
    assert "s3cr3t" not in plan.to_json()


def test_render() -> None:
    plan = Plan(
        changes=[
            PlannedChange("subnet.old", "subnet", "old", Action.DELETE),
            PlannedChange("network.main", "network", "main", Action.NOOP),
            PlannedChange(
                "subnet.new", "subnet", "new", Action.CREATE, changed=["cidr_block", "vpc_id"]
            ),
        ]
    )

    rendered = plan.render()

    assert "network.main" not in rendered
    assert "subnet.old" in rendered
    assert "cidr_block, vpc_id" in rendered
    assert rendered.endswith("Plan: 1 to add, 0 to change, 1 to destroy.")


def test_display_value() -> None:
    value = {"id": Unknown("network.main.id"), "zones": ["a", Unknown("x.y.z")]}

    assert display_value(value) == {
        "id": "(known after apply)",
        "zones": ["a", "(known after apply)"],
    }
    assert display_value("s3cr3t", sensitive=True) == "(sensitive)"


def test_serialize_value() -> None:
    assert serialize_value([1, {"a": Unknown("x.y.z")}]) == [1, {"a": {"unknown": "x.y.z"}}]


WHOLE_RESOURCE = """
resources:
  - type: network
    name: main
    attributes:
      cidr_block: 10.0.0.0/16
  - type: subnet
    name: public
    attributes:
      vpc: ${network.main}
"""


def test_plan_whole_resource_reference(write_docs: WriteDocs) -> None:
    network = {"id": "vpc-123", "cidr_block": "10.0.0.0/16"}
    state = {
        "resources": {
            "network.main": {"type": "network", "name": "main", "attributes": network},
            "subnet.public": {
                "type": "subnet",
                "name": "public",
                "attributes": {"id": "subnet-1", "vpc": network},
                "dependencies": ["network.main"],
            },
        }
    }

    plan = make_plan(write_docs, state, content=WHOLE_RESOURCE)

    assert [c.action for c in plan.changes] == [Action.NOOP, Action.NOOP]
    assert plan.change_for("subnet.public").after == {"vpc": network}
    assert not plan.has_changes

    # Without a recorded network, the whole resource is not known yet
    created = make_plan(write_docs, content=WHOLE_RESOURCE)
    assert created.change_for("subnet.public").after["vpc"] == Unknown(
        "network.main", address="network.main"
    )


SENSITIVE_ATTRIBUTES = """
variables:
  db_password:
    type: string
    default: hunter2
    sensitive: true
resources:
  - type: database
    name: main
    attributes:
      engine: postgres
      password: ${var.db_password}
      url: postgres://admin:${var.db_password}@db
"""


def test_plan_masks_sensitive_attributes(write_docs: WriteDocs) -> None:
    state = {
        "resources": {
            "database.main": {
                "type": "database",
                "name": "main",
                "attributes": {"engine": "postgres", "password": "old-password"},
            }
        }
    }
    plan = make_plan(write_docs, state, content=SENSITIVE_ATTRIBUTES)

    change = plan.change_for("database.main")
    assert change.sensitive == ["password", "url"]
    # Diffing still sees the real values
    assert change.changed == ["password", "url"]

    data = plan.to_dict()["changes"][0]
    assert data["sensitive"] == ["password", "url"]
    assert data["after"] == {
        "engine": "postgres",
        "password": {"sensitive": True},
        "url": {"sensitive": True},
    }
    assert data["before"]["password"] == {"sensitive": True}
    assert "hunter2" not in plan.to_json()
    assert "old-password" not in plan.to_json()
