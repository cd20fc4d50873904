from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from clusterplan.config import load_yaml
from clusterplan.constants import STATE_VERSION
from clusterplan.errors import ParseError, StateError
from clusterplan.logger import logger


class ResourceState(BaseModel):
    """
    Represents a resource as recorded by the apply engine after its last apply.
    """

    # The engine may record more than we read
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="The type tag of the resource.")
    name: str = Field(..., description="The name of the resource.")
    attributes: Dict[str, Any] = Field(
        {}, description="All attributes, including the ones computed by the provider."
    )
    dependencies: List[str] = Field(
        [], description="Addresses the resource depended on when it was applied."
    )


class State(BaseModel):
    """
    Represents a recorded state snapshot.
    """

    model_config = ConfigDict(extra="ignore")

    version: int = Field(STATE_VERSION, description="The snapshot format version.")
    serial: int = Field(0, description="Incremented by the engine on every write.")
    resources: Dict[str, ResourceState] = Field(
        {}, description="The recorded resources keyed by address."
    )

    def get(self, address: str) -> Optional[ResourceState]:
        return self.resources.get(address)

    def attribute(self, address: str, path: tuple) -> Any:
        """
        Returns a recorded attribute.

        Raises:
            KeyError: If the resource or the attribute is not recorded.
        """
        resource = self.resources[address]
        value: Any = resource.attributes
        for segment in path:
            if isinstance(value, list) and segment.isdigit():
                value = value[int(segment)]
            else:
                value = value[segment]
        return value


class StateStore:
    """
    Read-only access to the state snapshot the apply engine keeps for a target
    environment.

    Writing the snapshot, and locking it so that two applies against the same
    environment cannot run at once, are the apply engine's job. A remote state
    backend with locking is required whenever more than one person or pipeline
    applies to the same environment. Resolution only ever reads the snapshot.
    """

    def __init__(self, path: Optional[str]) -> None:
        self.path = os.path.abspath(os.path.expanduser(path)) if path else None

    def load(self) -> State:
        """
        Loads the snapshot. A missing file means nothing has been applied yet.

        Raises:
            StateError: If the snapshot is malformed or of an unsupported version.
        """
        if self.path is None or not os.path.exists(self.path):
            logger.debug("No recorded state, planning against an empty state.")
            return State()

        try:
            with open(self.path, "r") as file:
                data = load_yaml(file.read(), source=self.path)
        except (OSError, ParseError) as e:
            raise StateError(f"{self.path}: cannot read state: {e}")

        if data is None:
            return State()
        if not isinstance(data, dict):
            raise StateError(f"{self.path}: a state snapshot must be a mapping")

        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(
                f"{self.path}: unsupported state version {version}, expected {STATE_VERSION}"
            )

        try:
            state = State(**data)
        except PydanticValidationError as e:
            raise StateError(f"{self.path}: malformed state: {e}")

        logger.debug(
            f"Loaded state serial {state.serial} with {len(state.resources)} resource(s)."
        )
        return state
