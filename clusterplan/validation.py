from __future__ import annotations

from typing import Any, List, Mapping

from clusterplan.config import Variable
from clusterplan.errors import ValidationError
from clusterplan.expressions import is_known
from clusterplan.loader import Configuration
from clusterplan.vartypes import check_type


def check_variable(path: str, variable: Variable, value: Any) -> List[str]:
    """
    Type-checks a bound value and evaluates the variable's validation rules.

    Values that are only known after apply are not checked. Rules are only
    evaluated when the type matches, and a null value skips them.

    Args:
        path (str): How the variable is named in messages, e.g. "var.region".
        variable (Variable): The declaration.
        value (Any): The bound value.

    Returns:
        List[str]: Every violation found.
    """
    if not is_known(value):
        return []

    violations = check_type(value, variable.type_spec, path)
    if violations or value is None:
        return violations

    for rule in variable.validation:
        for failure in rule.violations(value):
            if variable.sensitive:
                violations.append(f"{path}: {failure}")
            else:
                violations.append(f"{path} = {value!r}: {failure}")
    return violations


def check_module_inputs(config: Configuration) -> List[str]:
    """
    Checks that every module invocation only passes inputs its module declares.
    """
    violations: List[str] = []
    for scope in config.walk():
        for name in sorted(scope.modules):
            child = scope.children[name]
            for key in sorted(scope.modules[name].inputs):
                if key not in child.variables:
                    violations.append(
                        f"{scope.address('module.' + name)}: unsupported input '{key}',"
                        " the module declares no such variable"
                    )
    return violations


def validate(config: Configuration, bound: Mapping[str, Any]) -> None:
    """
    Validates the bound root variables and the module invocations of a configuration.

    Raises:
        ValidationError: Listing every violation found.
    """
    violations: List[str] = []
    for name in sorted(config.variables):
        violations.extend(
            check_variable(f"var.{name}", config.variables[name], bound.get(name))
        )
    violations.extend(check_module_inputs(config))

    if violations:
        raise ValidationError(violations)
