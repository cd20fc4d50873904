from __future__ import annotations

import ipaddress
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from clusterplan.constants import CONFIG_VERSION
from clusterplan.errors import ParseError
from clusterplan.vartypes import TypeSpec, parse_type

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

RESOURCE_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]*$")

# Resource types that would shadow the other reference namespaces
RESERVED_TYPES = ("var", "module", "output")


def validate_identifier(v: str, what: str = "name") -> str:
    """
    Validates that a name can be used as a segment of a reference.

    Args:
        v (str): The name.
        what (str, optional): What the name is for, used in the error message. Defaults to "name".

    Returns:
        str: The input value if validation is successful.

    Raises:
        ValueError: If the name contains characters a reference cannot hold.
    """
    if not isinstance(v, str) or not IDENTIFIER_RE.match(v):
        raise ValueError(f"Invalid {what} '{v}'")
    return v


class ClusterPlanBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ValidationRule(ClusterPlanBaseModel):
    """
    Represents a validation rule attached to a variable.

    Every predicate that is set must hold for the value to be valid.
    """

    pattern: Optional[str] = Field(
        None, description="A regular expression the whole string value must match."
    )
    allowed: Optional[List[Any]] = Field(
        None, description="The list of values the variable may take."
    )
    min: Optional[float] = Field(None, description="The minimum numeric value.")
    max: Optional[float] = Field(None, description="The maximum numeric value.")
    minLength: Optional[int] = Field(
        None, description="The minimum length of a string, list or map."
    )
    maxLength: Optional[int] = Field(
        None, description="The maximum length of a string, list or map."
    )
    cidr: Optional[bool] = Field(
        None, description="Whether the value must be an IPv4 or IPv6 CIDR block."
    )
    errorMessage: Optional[str] = Field(
        None, description="The message reported when the rule does not hold."
    )

    @field_validator("pattern", mode="before")
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid pattern: {e}")
        return v

    @model_validator(mode="after")
    def check_has_predicate(self) -> "ValidationRule":
        predicates = self.model_dump(exclude={"errorMessage"}, exclude_none=True)
        if not predicates:
            raise ValueError("A validation rule must define at least one predicate")
        return self

    def violations(self, value: Any) -> List[str]:
        """
        Evaluates the rule against a value.

        Args:
            value (Any): The bound value. Values of the wrong shape for a predicate
                (e.g. a pattern against a number) fail that predicate.

        Returns:
            List[str]: A description of each failed predicate. Empty if the rule holds.
        """
        failed: List[str] = []

        if self.pattern is not None:
            if not isinstance(value, str) or not re.fullmatch(self.pattern, value):
                failed.append(f"must match pattern {self.pattern!r}")

        if self.allowed is not None and value not in self.allowed:
            failed.append(f"must be one of {self.allowed}")

        is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.min is not None and (not is_number or value < self.min):
            failed.append(f"must be a number >= {self.min:g}")
        if self.max is not None and (not is_number or value > self.max):
            failed.append(f"must be a number <= {self.max:g}")

        has_len = isinstance(value, (str, list, dict))
        if self.minLength is not None and (
            not has_len or len(value) < self.minLength
        ):
            failed.append(f"must have length >= {self.minLength}")
        if self.maxLength is not None and (
            not has_len or len(value) > self.maxLength
        ):
            failed.append(f"must have length <= {self.maxLength}")

        if self.cidr and not is_cidr(value):
            failed.append("must be a valid CIDR block")

        if failed and self.errorMessage:
            return [self.errorMessage]
        return failed


def is_cidr(value: Any) -> bool:
    if not isinstance(value, str) or "/" not in value:
        return False
    try:
        ipaddress.ip_network(value, strict=True)
    except ValueError:
        return False
    return True


class Variable(ClusterPlanBaseModel):
    """
    Represents an input variable of a configuration or module.
    """

    type: str = Field("any", description="The type expression of the variable.")
    default: Any = Field(
        None,
        description="The value used when no other value is supplied. A variable without a default is required.",
    )
    description: Optional[str] = Field(
        None, description="The description of the variable."
    )
    sensitive: bool = Field(
        False, description="Whether the value is masked in logs and diagnostics."
    )
    validation: List[ValidationRule] = Field(
        [], description="The validation rules the bound value must satisfy."
    )

    @field_validator("type", mode="before")
    def validate_type(cls, v: str) -> str:
        if not isinstance(v, str):
            raise ValueError("type must be a string")
        parse_type(v)
        return v

    @property
    def type_spec(self) -> TypeSpec:
        return parse_type(self.type)

    @property
    def required(self) -> bool:
        # An explicit `default: null` still counts as a default
        return "default" not in self.model_fields_set


class Resource(ClusterPlanBaseModel):
    """
    Represents a resource declaration.
    """

    type: str = Field(..., description="The type tag of the resource, e.g. subnet.")
    name: str = Field(..., description="The name of the resource, unique per type.")
    attributes: Dict[str, Any] = Field(
        {}, description="The desired attributes. Values may contain ${...} references."
    )
    dependsOn: List[str] = Field(
        [],
        description="Addresses of declarations this resource depends on in addition to the ones it references.",
    )

    @field_validator("type", mode="before")
    def validate_resource_type(cls, v: str) -> str:
        if not isinstance(v, str) or not RESOURCE_TYPE_RE.match(v):
            raise ValueError(f"Invalid resource type '{v}'")
        if v in RESERVED_TYPES:
            raise ValueError(f"'{v}' is reserved and cannot be used as a resource type")
        return v

    @field_validator("name", mode="before")
    def validate_name(cls, v: str) -> str:
        return validate_identifier(v, "resource name")

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


class Output(ClusterPlanBaseModel):
    """
    Represents an output value exported by a configuration or module.
    """

    value: Any = Field(..., description="The value. May contain ${...} references.")
    description: Optional[str] = Field(
        None, description="The description of the output."
    )
    sensitive: bool = Field(
        False, description="Whether the value is masked when displayed."
    )


class ModuleCall(ClusterPlanBaseModel):
    """
    Represents the invocation of a module.
    """

    source: str = Field(
        ...,
        description="The directory of the module, relative to the document declaring the call.",
    )
    inputs: Dict[str, Any] = Field(
        {}, description="The values of the module's variables."
    )


class Document(ClusterPlanBaseModel):
    """
    Represents one declaration document.
    """

    version: Optional[str] = Field(
        None, description="The version of the document format."
    )
    variables: Dict[str, Variable] = Field({}, description="The declared variables.")
    resources: List[Resource] = Field([], description="The resource declarations.")
    outputs: Dict[str, Output] = Field({}, description="The declared outputs.")
    modules: Dict[str, ModuleCall] = Field({}, description="The module invocations.")

    @field_validator("version", mode="before")
    def validate_version(cls, v: Optional[str]) -> Optional[str]:
        # An unquoted 1.10 is read as the float 1.1
        if v is not None and not isinstance(v, str):
            raise ValueError('version must be a quoted string, e.g. version: "1.0"')
        if v is not None and not re.match(r"^\d+\.\d+$", v):
            raise ValueError('version must be in the format "x.x"')
        return v

    @model_validator(mode="before")
    def check_names(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(values, dict):
            return values

        for section in ("variables", "outputs", "modules"):
            for name in values.get(section) or {}:
                validate_identifier(name, section[:-1] + " name")

        # No two resources may share a type and a name
        addresses = set()
        for resource in values.get("resources") or []:
            if not isinstance(resource, dict):
                continue
            address = f"{resource.get('type')}.{resource.get('name')}"
            if address in addresses:
                raise ValueError(f"Duplicate resource declaration '{address}'")
            addresses.add(address)

        return values


def check_version(version: str) -> None:
    """
    Checks that a document version can be handled by this tool.

    Raises:
        ValueError: If the version is malformed or not compatible.
    """
    if not re.match(r"^\d+\.\d+$", version):
        raise ValueError('version must be in the format "x.x"')

    # Make sure the major version matches
    major_version, minor_version = map(int, version.split("."))
    tool_major_version, tool_minor_version = map(int, CONFIG_VERSION.split("."))

    if major_version < tool_major_version:
        raise ValueError(
            f"This tool supports versions starting from {tool_major_version}.0."
        )
    elif major_version > tool_major_version:
        raise ValueError(
            "Your current tool is too old. Please upgrade your tool to handle this document."
        )
    elif minor_version > tool_minor_version:  # No forward compatibility
        raise ValueError(
            f"This tool supports versions up to {tool_major_version}.{tool_minor_version}."
            " Please upgrade your tool to handle this document."
        )


def load_yaml(yaml_str: str, source: Optional[str] = None) -> Any:
    """
    Loads a YAML string into plain Python values.

    Duplicate mapping keys are rejected.

    Raises:
        ParseError: If the string is not well-formed YAML.
    """
    yaml = YAML(typ="safe", pure=True)
    try:
        return yaml.load(yaml_str)
    except YAMLError as e:
        raise ParseError(f"Malformed YAML: {e}", source)


def parse_yaml(yaml_str: str, source: Optional[str] = None) -> Document:
    """
    Parse a YAML string and return a Document object.

    Args:
        yaml_str (str): The YAML string to parse.
        source (Optional[str]): The file the string was read from, used in diagnostics.

    Returns:
        Document: The parsed document. An empty string yields an empty document.

    Raises:
        ParseError: If the YAML is malformed, the version is not supported or the
            content does not match the declaration schema.
    """
    data = load_yaml(yaml_str, source)
    if data is None:
        return Document()

    if not isinstance(data, dict):
        raise ParseError("A declaration document must be a mapping", source)

    version = data.get("version", None)
    if version is not None:
        if not isinstance(version, str):
            raise ParseError(
                f"Invalid configuration: version must be a quoted string, got {version!r}",
                source,
            )
        try:
            check_version(version)
        except ValueError as e:
            raise ParseError(f"Invalid configuration: {e}", source)

    try:
        return Document(**data)
    except PydanticValidationError as e:
        raise ParseError(_format_pydantic_error(e), source)


def _format_pydantic_error(e: PydanticValidationError) -> str:
    messages = []
    for error in e.errors():
        location = ".".join(str(part) for part in error["loc"])
        message = error["msg"]
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)
