from pathlib import Path
from typing import Callable

import pytest

from clusterplan.config import ValidationRule, Variable
from clusterplan.errors import ValidationError
from clusterplan.expressions import Unknown
from clusterplan.loader import load
from clusterplan.validation import check_module_inputs, check_variable, validate


def test_check_variable() -> None:
    variable = Variable(
        type="string",
        validation=[ValidationRule(cidr=True), ValidationRule(maxLength=12)],
    )
    assert check_variable("var.vpc_cidr", variable, "10.0.0.0/16") == []
    assert check_variable("var.vpc_cidr", variable, "10.0.0.0/1600") == [
        "var.vpc_cidr = '10.0.0.0/1600': must be a valid CIDR block",
        "var.vpc_cidr = '10.0.0.0/1600': must have length <= 12",
    ]


def test_check_variable_type_before_rules() -> None:
    variable = Variable(type="number", validation=[ValidationRule(min=1)])
    assert check_variable("var.nodes", variable, "3") == [
        "var.nodes: expected number, got string"
    ]


def test_check_variable_skips_unknown_and_null() -> None:
    variable = Variable(type="string", validation=[ValidationRule(pattern="^a")])
    assert check_variable("var.arn", variable, Unknown("cluster.main.arn")) == []
    assert check_variable("var.arn", variable, None) == []


def test_check_variable_masks_sensitive() -> None:
    variable = Variable(
        type="string", sensitive=True, validation=[ValidationRule(minLength=8)]
    )
    assert check_variable("var.token", variable, "secret") == [
        "var.token: must have length >= 8"
    ]


def test_validate_reports_all_violations(write_docs: Callable[..., Path]) -> None:
    root = write_docs(
        {
            "main.yaml": """
                variables:
                  min_nodes:
                    type: number
                  region:
                    type: string
                    validation:
                      - allowed: [us-west-2, us-east-1]
            """
        }
    )
    config = load([root])

    with pytest.raises(ValidationError) as exc_info:
        validate(config, {"min_nodes": "two", "region": "mars-1"})

    assert exc_info.value.violations == [
        "var.min_nodes: expected number, got string",
        "var.region = 'mars-1': must be one of ['us-west-2', 'us-east-1']",
    ]
    assert "2 validation error(s)" in str(exc_info.value)


def test_check_module_inputs(write_docs: Callable[..., Path]) -> None:
    root = write_docs(
        {
            "main.yaml": """
                modules:
                  workers:
                    source: ./workers
                    inputs:
                      size: 2
                      colour: blue
            """,
            "workers/main.yaml": """
                variables:
                  size:
                    type: number
            """,
        }
    )
    assert check_module_inputs(load([root])) == [
        "module.workers: unsupported input 'colour', the module declares no such variable"
    ]
