from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Set

from clusterplan.config import Output
from clusterplan.errors import (
    MissingRequiredInputError,
    ParseError,
    UnresolvedReferenceError,
    ValidationError,
)
from clusterplan.expressions import (
    Reference,
    Unknown,
    find_references,
    find_unclosed,
    get_path,
    interpolate,
    parse_reference,
)
from clusterplan.graph import DependencyGraph
from clusterplan.inputs import bind_inputs, discover_vars_files
from clusterplan.loader import Configuration, PathLike, load
from clusterplan.logger import logger
from clusterplan.plan import Plan, build_plan
from clusterplan.state import State, StateStore
from clusterplan.validation import check_variable, validate

RESOURCE = "resource"
MODULE_VARIABLE = "variable"
MODULE_OUTPUT = "output"


class _Node(NamedTuple):
    kind: str
    # The configuration the declaration belongs to
    scope: Configuration
    # The local resource address, variable name or output name
    name: str
    # For module variables, the configuration invoking the module
    parent: Optional[Configuration] = None
    call: Optional[str] = None


@dataclass
class ResolvedResource:
    """
    A resource declaration with every reference replaced.
    """

    address: str
    type: str
    name: str
    attributes: Dict[str, Any]
    # Addresses of the resources this one depends on, directly or through modules
    dependencies: List[str] = field(default_factory=list)
    # Attribute keys whose value comes from a sensitive variable
    sensitive: List[str] = field(default_factory=list)


@dataclass
class ResolvedOutput:
    value: Any
    sensitive: bool = False
    description: Optional[str] = None


@dataclass
class ResolvedConfiguration:
    """
    The desired resource graph handed to planning.
    """

    resources: Dict[str, ResolvedResource]
    outputs: Dict[str, ResolvedOutput]
    graph: DependencyGraph
    # Resource addresses, every resource after the resources it depends on
    order: List[str]


class Resolver:
    """
    Turns loaded declarations into a validated, fully resolved resource graph.

    The phases run in order: bind_inputs, validate, resolve_references, plan. Every
    piece of state lives on the instance, so two resolvers never share anything.
    """

    def __init__(self, config: Configuration) -> None:
        self.config = config
        self.inputs: Dict[str, Any] = {}
        self.graph = DependencyGraph()
        self._nodes: Dict[str, _Node] = {}
        self._values: Dict[str, Any] = {}
        # Module variable and output nodes whose value carries a sensitive value
        self._sensitive: Set[str] = set()
        self._resolved: Optional[ResolvedConfiguration] = None

    @classmethod
    def load(cls, paths: Sequence[PathLike]) -> "Resolver":
        """
        Loads the declaration documents at ``paths`` into a new resolver.
        """
        return cls(load(paths))

    def bind_inputs(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        var_files: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """
        Binds the root variables. Vars files found next to the root documents are
        read before the ones passed in ``var_files``.
        """
        files = discover_vars_files(self.config.directory) + list(var_files)
        self.inputs = bind_inputs(self.config.variables, overrides, environ, files)
        self._resolved = None
        return self.inputs

    def validate(self) -> None:
        validate(self.config, self.inputs)

    def resolve_references(self) -> ResolvedConfiguration:
        """
        Resolves every reference and builds the dependency graph.

        Raises:
            ParseError: If a reference is malformed.
            UnresolvedReferenceError: If a reference names something not declared.
            MissingRequiredInputError: If a module invocation leaves a required variable unset.
            CyclicDependencyError: If the declarations depend on each other in a cycle.
            ValidationError: If a module input violates the module variable's type or rules.
        """
        self.graph = DependencyGraph()
        self._nodes = {}
        self._values = {}
        self._sensitive = set()

        self._build_graph()
        order = self.graph.topological_order()
        logger.debug(f"Resolving {len(order)} node(s) in dependency order.")

        violations: List[str] = []
        for node in order:
            violations.extend(self._evaluate(node))
        if violations:
            raise ValidationError(violations)

        resources: Dict[str, ResolvedResource] = {}
        resource_order = [n for n in order if self._nodes[n].kind == RESOURCE]
        for address in resource_order:
            node = self._nodes[address]
            declaration = node.scope.resources[node.name]
            resources[address] = ResolvedResource(
                address=address,
                type=declaration.type,
                name=declaration.name,
                attributes=self._values[address],
                dependencies=self._resource_dependencies(address),
                sensitive=sorted(
                    key
                    for key, value in declaration.attributes.items()
                    if self._is_sensitive(node.scope, value)
                ),
            )

        outputs: Dict[str, ResolvedOutput] = {}
        lookup = self._lookup(self.config)
        for name in sorted(self.config.outputs):
            output = self.config.outputs[name]
            outputs[name] = ResolvedOutput(
                value=interpolate(output.value, lookup),
                sensitive=output.sensitive,
                description=output.description,
            )

        self._resolved = ResolvedConfiguration(
            resources=resources,
            outputs=outputs,
            graph=self.graph,
            order=resource_order,
        )
        return self._resolved

    def plan(self, state: Optional[State] = None, destroy: bool = False) -> Plan:
        """
        Diffs the resolved graph against recorded state.

        Args:
            state (Optional[State]): The recorded state. Defaults to an empty state.
            destroy (bool): Plan the removal of every recorded resource instead.
        """
        if self._resolved is None:
            self.resolve_references()
        assert self._resolved is not None
        return build_plan(self._resolved, state or State(), destroy=destroy)

    def _location(
        self, scope: Configuration, label: str, section: str, key: str
    ) -> str:
        return f"{scope.address(label)} ({scope.source_of(section, key)})"

    def _parse(self, text: str, location: str) -> Reference:
        try:
            return parse_reference(text)
        except ValueError as e:
            raise ParseError(f"{e} in {location}")

    def _target(self, scope: Configuration, text: str, location: str) -> Optional[str]:
        """
        Checks a reference and returns the graph node it depends on, if any.
        """
        ref = self._parse(text, location)

        if ref.kind == "var":
            name = ref.target[len("var.") :]
            if name not in scope.variables:
                raise UnresolvedReferenceError(scope.address(ref.text), location)
            # Root variables are bound before resolution and have no node
            return None if scope.is_root else scope.address(ref.target)

        if ref.kind == "module":
            call = ref.target[len("module.") :]
            if call not in scope.modules:
                raise UnresolvedReferenceError(scope.address(ref.text), location)
            child = scope.children[call]
            if ref.path[0] not in child.outputs:
                raise UnresolvedReferenceError(
                    scope.address(ref.text),
                    location,
                    f"module '{call}' has no output '{ref.path[0]}'",
                )
            return child.address(f"output.{ref.path[0]}")

        if ref.target not in scope.resources:
            raise UnresolvedReferenceError(scope.address(ref.text), location)
        return scope.address(ref.target)

    def _references(self, value: Any, location: str) -> List[str]:
        unclosed = next(find_unclosed(value), None)
        if unclosed is not None:
            raise ParseError(f"Unclosed interpolation in '{unclosed}' in {location}")
        return list(find_references(value))

    def _add_references(
        self, node: str, scope: Configuration, value: Any, location: str
    ) -> None:
        for text in self._references(value, location):
            target = self._target(scope, text, location)
            if target is not None:
                self.graph.add_edge(node, target)

    def _add_explicit_dependency(
        self, node: str, scope: Configuration, address: str, location: str
    ) -> None:
        parts = address.split(".")
        if len(parts) == 2 and parts[0] == "module":
            if parts[1] not in scope.modules:
                raise UnresolvedReferenceError(scope.address(address), location)
            # Depending on a module means depending on everything inside it
            for child in scope.children[parts[1]].walk():
                for local in child.resources:
                    self.graph.add_edge(node, child.address(local))
            return

        ref = self._parse(address, location)
        if ref.kind != "resource" or ref.path:
            raise ParseError(
                f"dependsOn entries must be resource or module addresses, got '{address}' in {location}"
            )
        if ref.target not in scope.resources:
            raise UnresolvedReferenceError(scope.address(address), location)
        self.graph.add_edge(node, scope.address(ref.target))

    def _build_graph(self) -> None:
        missing: List[str] = []

        for scope in self.config.walk():
            for local in sorted(scope.resources):
                resource = scope.resources[local]
                node = scope.address(local)
                location = self._location(scope, local, "resource", local)
                self.graph.add_node(node)
                self._nodes[node] = _Node(RESOURCE, scope, local)
                self._add_references(node, scope, resource.attributes, location)
                for address in resource.dependsOn:
                    self._add_explicit_dependency(node, scope, address, location)

            for call_name in sorted(scope.modules):
                call = scope.modules[call_name]
                child = scope.children[call_name]
                location = self._location(
                    scope, f"module.{call_name}", "module", call_name
                )
                for name in sorted(child.variables):
                    node = child.address(f"var.{name}")
                    self.graph.add_node(node)
                    self._nodes[node] = _Node(
                        MODULE_VARIABLE, child, name, scope, call_name
                    )
                    if name in call.inputs:
                        self._add_references(node, scope, call.inputs[name], location)
                    elif child.variables[name].required:
                        missing.append(node)

            for name in sorted(scope.outputs):
                output = scope.outputs[name]
                location = self._location(scope, f"output.{name}", "output", name)
                if scope.is_root:
                    for text in self._references(output.value, location):
                        self._target(scope, text, location)
                    continue
                node = scope.address(f"output.{name}")
                self.graph.add_node(node)
                self._nodes[node] = _Node(MODULE_OUTPUT, scope, name)
                self._add_references(node, scope, output.value, location)

        if missing:
            raise MissingRequiredInputError(missing)

        logger.debug(
            f"Built dependency graph with {len(self.graph)} node(s) and {len(self.graph.edges())} edge(s)."
        )

    def _evaluate(self, node: str) -> List[str]:
        entry = self._nodes[node]

        if entry.kind == RESOURCE:
            resource = entry.scope.resources[entry.name]
            self._values[node] = interpolate(
                resource.attributes, self._lookup(entry.scope)
            )
            return []

        if entry.kind == MODULE_OUTPUT:
            output: Output = entry.scope.outputs[entry.name]
            self._values[node] = interpolate(output.value, self._lookup(entry.scope))
            if output.sensitive or self._is_sensitive(entry.scope, output.value):
                self._sensitive.add(node)
            return []

        assert entry.parent is not None and entry.call is not None
        variable = entry.scope.variables[entry.name]
        call = entry.parent.modules[entry.call]
        if entry.name in call.inputs:
            value = interpolate(call.inputs[entry.name], self._lookup(entry.parent))
            if self._is_sensitive(entry.parent, call.inputs[entry.name]):
                self._sensitive.add(node)
        else:
            value = variable.default
        if variable.sensitive:
            self._sensitive.add(node)
        self._values[node] = value
        if value is None and variable.required:
            return [f"{node}: a value is required, got null"]
        return check_variable(node, variable, value)

    def _is_sensitive(self, scope: Configuration, value: Any) -> bool:
        """
        Returns whether a declared value references a sensitive variable, directly
        or through module variables and outputs.
        """
        for text in find_references(value):
            ref = parse_reference(text)
            if ref.kind == "var":
                variable = scope.variables[ref.target[len("var.") :]]
                if variable.sensitive or scope.address(ref.target) in self._sensitive:
                    return True
            elif ref.kind == "module":
                child = scope.children[ref.target[len("module.") :]]
                if child.address(f"output.{ref.path[0]}") in self._sensitive:
                    return True
        return False

    def _lookup(self, scope: Configuration) -> Callable[[str], Any]:
        def lookup(text: str) -> Any:
            ref = parse_reference(text)

            if ref.kind == "var":
                name = ref.target[len("var.") :]
                if scope.is_root:
                    value = self.inputs.get(name)
                else:
                    value = self._values[scope.address(ref.target)]
                return self._index(value, ref, scope)

            if ref.kind == "module":
                child = scope.children[ref.target[len("module.") :]]
                value = self._values[child.address(f"output.{ref.path[0]}")]
                return self._index(value, ref, scope, skip=1)

            address = scope.address(ref.target)
            expression = scope.address(ref.text)
            if not ref.path:
                return Unknown(expression, address=address)

            attributes = self._values[address]
            if ref.path[0] not in attributes:
                # Computed by the provider, e.g. an id or an endpoint
                return Unknown(expression, address=address, path=ref.path)
            try:
                return get_path(attributes, ref.path)
            except KeyError:
                return Unknown(expression, address=address, path=ref.path)

        return lookup

    def _index(
        self, value: Any, ref: Reference, scope: Configuration, skip: int = 0
    ) -> Any:
        try:
            return get_path(value, ref.path[skip:])
        except KeyError as e:
            raise UnresolvedReferenceError(
                scope.address(ref.text), scope.directory, f"no key {e}"
            )

    def _resource_dependencies(self, address: str) -> List[str]:
        """
        Returns the nearest resources a resource depends on, looking through module
        variables and outputs.
        """
        found: Set[str] = set()
        seen: Set[str] = set()
        pending = list(self.graph.dependencies(address))
        while pending:
            node = pending.pop()
            if node in seen:
                continue
            seen.add(node)
            if self._nodes[node].kind == RESOURCE:
                found.add(node)
            else:
                pending.extend(self.graph.dependencies(node))
        return sorted(found)


def resolve(
    paths: Sequence[PathLike],
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    var_files: Sequence[str] = (),
    state_path: Optional[str] = None,
    destroy: bool = False,
) -> Plan:
    """
    Runs every phase: load, bind inputs, validate, resolve references and plan.

    Args:
        paths (Sequence[PathLike]): Declaration files, or directories of them.
        overrides (Optional[Mapping[str, Any]]): Explicit variable values.
        environ (Optional[Mapping[str, str]]): The environment. Defaults to os.environ.
        var_files (Sequence[str]): Extra vars files, lowest precedence first.
        state_path (Optional[str]): The recorded state snapshot. None plans against an empty state.
        destroy (bool): Plan the removal of every recorded resource.

    Returns:
        Plan: The ordered plan.

    Raises:
        ResolutionError: If any phase fails. Nothing outside the process is touched.
    """
    logger.debug("Loading declarations...")
    resolver = Resolver.load(paths)

    logger.debug("Binding inputs...")
    resolver.bind_inputs(overrides, environ, var_files)

    logger.debug("Validating inputs...")
    resolver.validate()

    logger.debug("Resolving references...")
    resolver.resolve_references()

    logger.debug("Planning...")
    return resolver.plan(StateStore(state_path).load(), destroy=destroy)
