from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple, Union

from clusterplan.config import Document, ModuleCall, Output, Resource, Variable, parse_yaml
from clusterplan.constants import DECLARATION_SUFFIXES, VARS_FILE_SUFFIXES
from clusterplan.errors import ParseError
from clusterplan.logger import logger

PathLike = Union[str, os.PathLike]


@dataclass
class Configuration:
    """
    The merged declarations of one directory: the root configuration, or one module
    instance. Addresses inside a module instance are prefixed with ``prefix``.
    """

    directory: str
    prefix: str = ""
    variables: Dict[str, Variable] = field(default_factory=dict)
    resources: Dict[str, Resource] = field(default_factory=dict)
    outputs: Dict[str, Output] = field(default_factory=dict)
    modules: Dict[str, ModuleCall] = field(default_factory=dict)
    children: Dict[str, "Configuration"] = field(default_factory=dict)
    # "<section>.<name>" -> the file that declared it
    sources: Dict[str, str] = field(default_factory=dict)

    @property
    def is_root(self) -> bool:
        return not self.prefix

    def address(self, local: str) -> str:
        return f"{self.prefix}{local}"

    def walk(self) -> Iterator["Configuration"]:
        """
        Yields this configuration and every module instance below it, depth first.
        """
        yield self
        for name in sorted(self.children):
            yield from self.children[name].walk()

    def source_of(self, section: str, name: str) -> str:
        return self.sources.get(f"{section}.{name}", self.directory)


def is_declaration_file(path: str) -> bool:
    return path.endswith(DECLARATION_SUFFIXES) and not path.endswith(VARS_FILE_SUFFIXES)


def discover_files(paths: Sequence[PathLike]) -> List[str]:
    """
    Expands directories into the declaration documents they contain.

    Args:
        paths (Sequence[PathLike]): Files and directories. Directories are not searched recursively.

    Returns:
        List[str]: Absolute file paths. Files of a directory are sorted by name.

    Raises:
        ParseError: If a path does not exist.
    """
    files: List[str] = []
    for path in paths:
        path = os.path.abspath(os.path.expanduser(str(path)))
        if os.path.isdir(path):
            files.extend(
                os.path.join(path, f)
                for f in sorted(os.listdir(path))
                if is_declaration_file(f) and os.path.isfile(os.path.join(path, f))
            )
        elif os.path.isfile(path):
            files.append(path)
        else:
            raise ParseError("No such file or directory", path)
    return files


def read_document(path: str) -> Document:
    try:
        with open(path, "r") as file:
            return parse_yaml(file.read(), source=path)
    except OSError as e:
        raise ParseError(f"Cannot read file: {e.strerror}", path)


def merge_documents(
    documents: Sequence[Tuple[str, Document]], directory: str, prefix: str = ""
) -> Configuration:
    """
    Merges declaration documents into one configuration.

    Raises:
        ParseError: If two documents declare the same resource, variable, output or module.
    """
    config = Configuration(directory=directory, prefix=prefix)

    def claim(section: str, name: str, path: str) -> None:
        key = f"{section}.{name}"
        if key in config.sources:
            raise ParseError(
                f"Duplicate {section} '{name}', first declared in {config.sources[key]}",
                path,
            )
        config.sources[key] = path

    for path, document in documents:
        for name, variable in document.variables.items():
            claim("variable", name, path)
            config.variables[name] = variable

        for resource in document.resources:
            claim("resource", resource.address, path)
            config.resources[resource.address] = resource

        for name, output in document.outputs.items():
            claim("output", name, path)
            config.outputs[name] = output

        for name, call in document.modules.items():
            claim("module", name, path)
            config.modules[name] = call

    return config


def load(
    paths: Sequence[PathLike], prefix: str = "", _stack: Tuple[str, ...] = ()
) -> Configuration:
    """
    Loads declaration documents and the modules they invoke.

    Args:
        paths (Sequence[PathLike]): Declaration files, or directories of them.
        prefix (str, optional): The address prefix of the module instance being loaded.

    Returns:
        Configuration: The merged configuration, module instances attached as children.

    Raises:
        ParseError: On malformed documents, colliding declarations, missing module
            sources or modules that invoke themselves.
    """
    files = discover_files(paths)
    if not files:
        raise ParseError(
            "No declaration documents found", ", ".join(str(p) for p in paths)
        )

    directory = os.path.dirname(files[0])
    logger.debug(f"Loading {len(files)} document(s) from {directory}")

    documents = [(f, read_document(f)) for f in files]
    config = merge_documents(documents, directory, prefix)

    stack = _stack + (directory,)
    for name in sorted(config.modules):
        call = config.modules[name]
        declared_in = os.path.dirname(config.source_of("module", name))
        source = os.path.normpath(os.path.join(declared_in, call.source))
        if source in stack:
            raise ParseError(
                f"Module '{name}' invokes itself through {source}",
                config.source_of("module", name),
            )
        if not os.path.isdir(source):
            raise ParseError(
                f"Module '{name}' source {call.source} is not a directory",
                config.source_of("module", name),
            )
        config.children[name] = load(
            [source], prefix=f"{prefix}module.{name}.", _stack=stack
        )

    return config
