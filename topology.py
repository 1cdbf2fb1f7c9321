"""Topology and instance documents exchanged with the device management plane.

A topology is the persisted pipeline definition: a name, an optional
description, parameter declarations and three node collections (sources,
processors and sinks). Nodes reference each other through ``inputs``.

Property values are kept as plain JSON-like values except for parameter
references (``"${name}"``), which are parsed into :class:`ParameterReference`
so that they survive editing without being resolved.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

TYPE_KEY = "@type"
NAME_KEY = "name"
INPUTS_KEY = "inputs"
MEDIA_TYPE_SELECTOR = "mediaType"
SELECTOR_OPERATOR_IS = "is"

_PARAMETER_REFERENCE_RE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_.\-]*)\}$")


class NodeKind(str, Enum):
    """Collection a node descriptor is declared in."""

    SOURCE = "source"
    PROCESSOR = "processor"
    SINK = "sink"

    @property
    def collection(self) -> str:
        return f"{self.value}s"


@dataclass(frozen=True)
class ParameterReference:
    """Typed reference to a topology parameter, written as ``${name}``."""

    name: str

    def __str__(self) -> str:
        return "${" + self.name + "}"


@dataclass(frozen=True)
class OutputSelector:
    property: str
    operator: str
    value: str


@dataclass
class NodeInput:
    """Reference from a node to the node feeding it."""

    node_name: str
    output_selectors: list[OutputSelector] = field(default_factory=list)

    def media_types(self) -> list[str]:
        return [
            selector.value
            for selector in self.output_selectors
            if selector.property == MEDIA_TYPE_SELECTOR
            and selector.operator == SELECTOR_OPERATOR_IS
        ]


@dataclass
class NodeDescriptor:
    """
    Single node of a topology document.

    Attributes:
        name: Node name, unique within the topology.
        type: Type tag selecting a schema registry definition.
        kind: Collection the node belongs to.
        properties: Property name to value mapping. Values are literals,
            nested dicts/lists, or ParameterReference instances.
        inputs: References to the nodes feeding this node.
    """

    name: str
    type: str
    kind: NodeKind
    properties: dict[str, Any] = field(default_factory=dict)
    inputs: list[NodeInput] = field(default_factory=list)


@dataclass
class ParameterDeclaration:
    name: str
    type: str
    description: Optional[str] = None
    default: Optional[str] = None


@dataclass
class TopologyDocument:
    """
    Persisted/transmitted pipeline topology.

    Nodes keep their declaration order across all three collections
    (sources first, then processors, then sinks), which is also the order
    used to break ties during auto-layout.
    """

    name: str
    description: Optional[str] = None
    parameters: list[ParameterDeclaration] = field(default_factory=list)
    nodes: list[NodeDescriptor] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict, check_references: bool = True) -> "TopologyDocument":
        """
        Create a TopologyDocument from its wire representation.

        Args:
            data: Dictionary with 'name' and 'properties' keys.
            check_references: Reject duplicate node names and dangling
                inputs. Validation parses with False to report them instead.

        Returns:
            TopologyDocument: Parsed document.

        Raises:
            ValueError: If the document is malformed, a node name is
                duplicated, or an input references an unknown node.
        """
        if not isinstance(data, dict):
            raise ValueError("Topology document must be a mapping.")

        properties = data.get("properties") or {}
        if not isinstance(properties, dict):
            raise ValueError("Topology 'properties' must be a mapping.")

        parameters = [
            _parameter_from_dict(parameter)
            for parameter in properties.get("parameters") or []
        ]

        nodes: list[NodeDescriptor] = []
        for kind in NodeKind:
            for node_data in properties.get(kind.collection) or []:
                nodes.append(_node_from_dict(node_data, kind))

        topology = TopologyDocument(
            name=data.get("name") or "",
            description=properties.get("description"),
            parameters=parameters,
            nodes=nodes,
        )
        if check_references:
            topology.check_references()
        logger.debug(
            f"Parsed topology '{topology.name}' with {len(nodes)} nodes "
            f"and {len(parameters)} parameters"
        )
        return topology

    def to_dict(self) -> dict:
        """
        Convert the document back into its wire representation.

        Parameter references are emitted as ``${name}`` strings. Empty
        collections are omitted, matching what the management plane returns.
        """
        properties: dict[str, Any] = {}
        if self.description is not None:
            properties["description"] = self.description
        if self.parameters:
            properties["parameters"] = [
                _parameter_to_dict(parameter) for parameter in self.parameters
            ]
        for kind in NodeKind:
            collection = [
                _node_to_dict(node) for node in self.nodes if node.kind == kind
            ]
            if collection:
                properties[kind.collection] = collection

        return {"name": self.name, "properties": properties}

    def check_references(self) -> None:
        """
        Ensure node names are unique and every input references a known node.

        Raises:
            ValueError: On a duplicated node name or a dangling input.
        """
        seen: set[str] = set()
        for node in self.nodes:
            if node.name in seen:
                raise ValueError(f"Duplicate node name '{node.name}' in topology.")
            seen.add(node.name)

        for node in self.nodes:
            for node_input in node.inputs:
                if node_input.node_name not in seen:
                    raise ValueError(
                        f"Node '{node.name}' references unknown input node "
                        f"'{node_input.node_name}'."
                    )

    def get_node(self, name: str) -> Optional[NodeDescriptor]:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def copy(self) -> "TopologyDocument":
        return copy.deepcopy(self)


@dataclass
class InstanceParameter:
    name: str
    value: str


@dataclass
class InstanceDocument:
    """A named, parameter-bound activation of a topology."""

    name: str
    topology_name: str
    description: Optional[str] = None
    parameters: list[InstanceParameter] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict) -> "InstanceDocument":
        if not isinstance(data, dict):
            raise ValueError("Instance document must be a mapping.")
        properties = data.get("properties") or {}
        return InstanceDocument(
            name=data.get("name") or "",
            topology_name=properties.get("topologyName") or "",
            description=properties.get("description"),
            parameters=[
                InstanceParameter(
                    name=parameter["name"], value=str(parameter.get("value", ""))
                )
                for parameter in properties.get("parameters") or []
            ],
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "properties": {
                "topologyName": self.topology_name,
                "description": self.description or "",
                "parameters": [
                    {"name": parameter.name, "value": parameter.value}
                    for parameter in self.parameters
                ],
            },
        }

    def get_parameter_value(self, name: str) -> Optional[str]:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter.value
        return None


def parse_value(value: Any) -> Any:
    """Recursively replace ``${name}`` strings with ParameterReference."""
    if isinstance(value, str):
        match = _PARAMETER_REFERENCE_RE.match(value)
        if match:
            return ParameterReference(match.group(1))
        return value
    if isinstance(value, dict):
        return {key: parse_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [parse_value(item) for item in value]
    return value


def dump_value(value: Any) -> Any:
    """Inverse of parse_value()."""
    if isinstance(value, ParameterReference):
        return str(value)
    if isinstance(value, dict):
        return {key: dump_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [dump_value(item) for item in value]
    return value


def iter_parameter_references(value: Any, path: tuple[str, ...] = ()):
    """Yield (property path, ParameterReference) pairs found inside a value."""
    if isinstance(value, ParameterReference):
        yield path, value
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from iter_parameter_references(item, path + (key,))
    elif isinstance(value, list):
        for item in value:
            yield from iter_parameter_references(item, path)


def _parameter_from_dict(data: dict) -> ParameterDeclaration:
    if not isinstance(data, dict) or not data.get("name"):
        raise ValueError(f"Invalid parameter declaration: {data!r}")
    default = data.get("default")
    return ParameterDeclaration(
        name=data["name"],
        type=data.get("type", "String"),
        description=data.get("description"),
        default=None if default is None else str(default),
    )


def _parameter_to_dict(parameter: ParameterDeclaration) -> dict:
    result = {"name": parameter.name, "type": parameter.type}
    if parameter.description is not None:
        result["description"] = parameter.description
    if parameter.default is not None:
        result["default"] = parameter.default
    return result


def _node_from_dict(data: dict, kind: NodeKind) -> NodeDescriptor:
    if not isinstance(data, dict):
        raise ValueError(f"Invalid node descriptor in '{kind.collection}': {data!r}")
    node_type = data.get(TYPE_KEY)
    node_name = data.get(NAME_KEY)
    if not node_type:
        raise ValueError(f"Node '{node_name}' has no '{TYPE_KEY}'.")
    if not node_name:
        raise ValueError(f"Node of type '{node_type}' has no name.")

    inputs = []
    for input_data in data.get(INPUTS_KEY) or []:
        if not isinstance(input_data, dict) or not input_data.get("nodeName"):
            raise ValueError(f"Invalid input on node '{node_name}': {input_data!r}")
        inputs.append(
            NodeInput(
                node_name=input_data["nodeName"],
                output_selectors=[
                    OutputSelector(
                        property=selector.get("property", MEDIA_TYPE_SELECTOR),
                        operator=selector.get("operator", SELECTOR_OPERATOR_IS),
                        value=selector["value"],
                    )
                    for selector in input_data.get("outputSelectors") or []
                ],
            )
        )

    properties = {
        key: parse_value(value)
        for key, value in data.items()
        if key not in (TYPE_KEY, NAME_KEY, INPUTS_KEY)
    }
    return NodeDescriptor(
        name=node_name,
        type=node_type,
        kind=kind,
        properties=properties,
        inputs=inputs,
    )


def _node_to_dict(node: NodeDescriptor) -> dict:
    result: dict[str, Any] = {TYPE_KEY: node.type, NAME_KEY: node.name}
    result.update(dump_value(node.properties))
    if node.inputs:
        inputs = []
        for node_input in node.inputs:
            input_data: dict[str, Any] = {"nodeName": node_input.node_name}
            if node_input.output_selectors:
                input_data["outputSelectors"] = [
                    {
                        "property": selector.property,
                        "operator": selector.operator,
                        "value": selector.value,
                    }
                    for selector in node_input.output_selectors
                ]
            inputs.append(input_data)
        result[INPUTS_KEY] = inputs
    return result
