from pathlib import Path
from typing import Callable

import pytest

from clusterplan.errors import ParseError
from clusterplan.loader import discover_files, load

NETWORK = """
version: "1.0"
variables:
  vpc_cidr:
    type: string
    default: 10.0.0.0/16
resources:
  - type: network
    name: main
    attributes:
      cidr_block: ${var.vpc_cidr}
"""

SUBNETS = """
resources:
  - type: subnet
    name: public
    attributes:
      vpc_id: ${network.main.id}
"""


def test_discover_files(write_docs: Callable[..., Path]) -> None:
    root = write_docs(
        {
            "b.yaml": SUBNETS,
            "a.yml": NETWORK,
            "dev.vars.yaml": "vpc_cidr: 10.1.0.0/16\n",
            "notes.txt": "not a declaration",
        }
    )
    assert discover_files([root]) == [str(root / "a.yml"), str(root / "b.yaml")]

    # Explicit files are taken as given
    assert discover_files([root / "b.yaml"]) == [str(root / "b.yaml")]

    with pytest.raises(ParseError, match="No such file or directory"):
        discover_files([root / "missing.yaml"])


def test_load_merges_documents(write_docs: Callable[..., Path]) -> None:
    root = write_docs({"network.yaml": NETWORK, "subnets.yaml": SUBNETS})
    config = load([root])

    assert config.is_root
    assert config.directory == str(root)
    assert sorted(config.resources) == ["network.main", "subnet.public"]
    assert list(config.variables) == ["vpc_cidr"]
    assert config.source_of("resource", "subnet.public") == str(root / "subnets.yaml")


def test_load_duplicate_across_documents(write_docs: Callable[..., Path]) -> None:
    root = write_docs({"a.yaml": SUBNETS, "b.yaml": SUBNETS})

    with pytest.raises(ParseError, match="Duplicate resource 'subnet.public'") as exc_info:
        load([root])
    assert exc_info.value.source == str(root / "b.yaml")


def test_load_duplicate_variable(write_docs: Callable[..., Path]) -> None:
    root = write_docs({"a.yaml": NETWORK, "b.yaml": "variables:\n  vpc_cidr: {}\n"})

    with pytest.raises(ParseError, match="Duplicate variable 'vpc_cidr'"):
        load([root])


def test_load_duplicate_output(write_docs: Callable[..., Path]) -> None:
    output = "outputs:\n  vpc_id:\n    value: ${network.main.id}\n"
    root = write_docs({"a.yaml": output, "b.yaml": output})

    with pytest.raises(ParseError, match="Duplicate output 'vpc_id'"):
        load([root])


def test_load_empty_directory(tmp_path: Path) -> None:
    with pytest.raises(ParseError, match="No declaration documents found"):
        load([tmp_path])


def test_load_modules(write_docs: Callable[..., Path]) -> None:
    root = write_docs(
        {
            "main.yaml": """
                modules:
                  workers:
                    source: ./modules/node_group
                    inputs:
                      size: 2
            """,
            "modules/node_group/main.yaml": """
                variables:
                  size:
                    type: number
                resources:
                  - type: node_group
                    name: this
                    attributes:
                      size: ${var.size}
                modules:
                  launch:
                    source: ../launch_template
            """,
            "modules/launch_template/main.yaml": """
                resources:
                  - type: launch_template
                    name: this
            """,
        }
    )
    config = load([root])

    workers = config.children["workers"]
    assert workers.prefix == "module.workers."
    assert workers.address("node_group.this") == "module.workers.node_group.this"
    assert not workers.is_root

    launch = workers.children["launch"]
    assert launch.prefix == "module.workers.module.launch."
    assert [c.prefix for c in config.walk()] == [
        "",
        "module.workers.",
        "module.workers.module.launch.",
    ]


def test_load_module_missing_source(write_docs: Callable[..., Path]) -> None:
    root = write_docs({"main.yaml": "modules:\n  workers:\n    source: ./nowhere\n"})

    with pytest.raises(ParseError, match="is not a directory"):
        load([root])


def test_load_module_recursion(write_docs: Callable[..., Path]) -> None:
    root = write_docs({"main.yaml": "modules:\n  again:\n    source: .\n"})

    with pytest.raises(ParseError, match="invokes itself"):
        load([root])
