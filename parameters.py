"""
Parameter resolution for topology instances.

Parameters are declared at topology scope and referenced from node
properties as ``${name}``. When an instance of the topology is created each
declaration is resolved to a concrete value: the value bound by an existing
instance when there is one, otherwise the declared default.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from topology import (
    InstanceDocument,
    InstanceParameter,
    TopologyDocument,
    iter_parameter_references,
)

logger = logging.getLogger("parameters")

PARAMETER_MISSING_DESCRIPTION = "sidebarGraphInstanceParameterMissing"


@dataclass
class Parameter:
    """
    Resolved parameter of an instance being edited.

    Attributes:
        name: Parameter name, unique within the topology.
        type: Declared parameter type.
        value: Bound value ("" when nothing is bound and there is no default).
        error: Description key of the current validation error, "" when none.
    """

    name: str
    type: str
    value: str = ""
    error: str = ""


@dataclass(frozen=True)
class ParameterUsage:
    """Reference to a parameter from a node property."""

    node_name: str
    property_path: tuple[str, ...]
    parameter_name: str


class ParameterResolver:
    """Tracks the resolved parameters of one instance."""

    def __init__(self, parameters: Optional[list[Parameter]] = None):
        self._parameters: list[Parameter] = list(parameters or [])

    @staticmethod
    def declare_parameters(
        topology: TopologyDocument, instance: Optional[InstanceDocument] = None
    ) -> list[Parameter]:
        """
        Resolve every parameter declaration of a topology.

        Args:
            topology: Topology holding the declarations.
            instance: Previously saved instance whose bound values take
                precedence over the declared defaults (matched by name).

        Returns:
            list[Parameter]: One resolved parameter per declaration, in
            declaration order.
        """
        resolved = []
        for declaration in topology.parameters:
            value = declaration.default or ""
            if instance is not None:
                bound = instance.get_parameter_value(declaration.name)
                if bound is not None:
                    value = bound
            resolved.append(
                Parameter(name=declaration.name, type=declaration.type, value=value)
            )
        logger.debug(
            f"Resolved {len(resolved)} parameters for topology '{topology.name}'"
        )
        return resolved

    @classmethod
    def for_instance(
        cls, topology: TopologyDocument, instance: Optional[InstanceDocument] = None
    ) -> "ParameterResolver":
        return cls(cls.declare_parameters(topology, instance))

    @property
    def parameters(self) -> list[Parameter]:
        return list(self._parameters)

    def get(self, name: str) -> Optional[Parameter]:
        for parameter in self._parameters:
            if parameter.name == name:
                return parameter
        return None

    def bind(self, name: str, value: str) -> Parameter:
        """
        Bind a value to a parameter and clear its error.

        Raises:
            ValueError: If no parameter with this name is declared.
        """
        parameter = self.get(name)
        if parameter is None:
            raise ValueError(f"Parameter '{name}' is not declared.")
        parameter.value = value
        parameter.error = ""
        return parameter

    def validate(self, activating: bool) -> list[Parameter]:
        """
        Mark parameters without a value.

        Parameters are optional until the instance is activated; when
        ``activating`` is True every empty parameter gets an error.

        Returns:
            list[Parameter]: Parameters currently carrying an error.
        """
        for parameter in self._parameters:
            if activating and not parameter.value:
                parameter.error = PARAMETER_MISSING_DESCRIPTION
            else:
                parameter.error = ""
        return [parameter for parameter in self._parameters if parameter.error]

    def to_instance_parameters(self) -> list[InstanceParameter]:
        return [
            InstanceParameter(name=parameter.name, value=parameter.value)
            for parameter in self._parameters
        ]


def references(topology: TopologyDocument) -> list[ParameterUsage]:
    """List every parameter reference found in node properties."""
    usages = []
    for node in topology.nodes:
        for path, reference in iter_parameter_references(node.properties):
            usages.append(
                ParameterUsage(
                    node_name=node.name,
                    property_path=path,
                    parameter_name=reference.name,
                )
            )
    return usages


def undeclared_references(topology: TopologyDocument) -> list[ParameterUsage]:
    """List references to parameters the topology does not declare."""
    declared = {parameter.name for parameter in topology.parameters}
    return [usage for usage in references(topology) if usage.parameter_name not in declared]
