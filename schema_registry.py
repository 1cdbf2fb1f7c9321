"""
Schema registry holding the declarative definition of every node type.

A definition lists the editable properties of a node type (value type,
required flag, allowed values), the property used as the node display name
and the ports the node exposes on the canvas. The registry is a pure lookup:
definitions are loaded once from a static YAML source and never mutated.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from topology import NodeKind

logger = logging.getLogger("schema_registry")

NODE_DEFINITIONS_PATH = os.environ.get(
    "NODE_DEFINITIONS_PATH",
    str(Path(__file__).resolve().parent / "definitions" / "nodes.yaml"),
)

# Port type accepted or produced by nodes whose definition is unknown.
ANY_TYPE = "*"

INPUT_PORT_PREFIX = "input-"
OUTPUT_PORT_NAME = "output"

_registry_instance: Optional["SchemaRegistry"] = None


def get_schema_registry() -> "SchemaRegistry":
    """
    Returns the singleton instance of SchemaRegistry.
    If the definitions cannot be loaded, logs an error and exits the application.
    """
    global _registry_instance
    if _registry_instance is None:
        try:
            _registry_instance = SchemaRegistry.from_file(NODE_DEFINITIONS_PATH)
        except Exception as e:
            logger.error(f"Failed to load node definitions: {e}")
            sys.exit(1)
    return _registry_instance


@dataclass(frozen=True)
class PropertyDefinition:
    """
    Definition of a single node property.

    Attributes:
        name: Property key inside the node descriptor.
        type: Value type label (string, integer, number, boolean, object, array).
        required: Whether the property must be present and non-empty.
        allowed_values: Allowed value domain, empty when unconstrained.
        properties: Nested property definitions for object-typed properties.
    """

    name: str
    type: str = "string"
    required: bool = False
    allowed_values: tuple[str, ...] = ()
    properties: tuple["PropertyDefinition", ...] = ()

    def get_property(self, name: str) -> Optional["PropertyDefinition"]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "required": self.required,
            "allowed_values": list(self.allowed_values),
            "properties": [prop.to_dict() for prop in self.properties],
        }


@dataclass(frozen=True)
class PortDefinition:
    """Typed connection point. ``types`` holds the data types the port accepts
    (input) or produces (output); ANY_TYPE matches everything."""

    name: str
    types: frozenset[str]
    is_input: bool

    def accepts_any(self) -> bool:
        return ANY_TYPE in self.types


@dataclass(frozen=True)
class NodeDefinition:
    type_name: str
    kind: Optional[NodeKind] = None
    properties: tuple[PropertyDefinition, ...] = ()
    display_name_property: str = "name"
    input_ports: tuple[PortDefinition, ...] = ()
    output_port: Optional[PortDefinition] = None
    description: str = ""

    @property
    def ports(self) -> tuple[PortDefinition, ...]:
        if self.output_port is None:
            return self.input_ports
        return self.input_ports + (self.output_port,)

    def get_property(self, name: str) -> Optional[PropertyDefinition]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def get_port(self, name: str) -> Optional[PortDefinition]:
        for port in self.ports:
            if port.name == name:
                return port
        return None

    def required_paths(self) -> list[tuple[str, ...]]:
        """
        Return the property paths that must be present and non-empty.

        Nested required properties are listed for every object property;
        they only apply when the enclosing object is present.
        """
        paths: list[tuple[str, ...]] = []
        _collect_required(self.properties, (), paths)
        return paths

    def to_dict(self) -> dict:
        return {
            "type_name": self.type_name,
            "kind": self.kind.value if self.kind else None,
            "description": self.description,
            "display_name_property": self.display_name_property,
            "properties": [prop.to_dict() for prop in self.properties],
            "ports": [
                {"name": port.name, "types": sorted(port.types), "is_input": port.is_input}
                for port in self.ports
            ],
        }


def _collect_required(
    properties: Iterable[PropertyDefinition],
    prefix: tuple[str, ...],
    paths: list[tuple[str, ...]],
) -> None:
    for prop in properties:
        if prop.required:
            paths.append(prefix + (prop.name,))
        if prop.properties:
            _collect_required(prop.properties, prefix + (prop.name,), paths)


def fallback_definition(type_name: str) -> NodeDefinition:
    """Minimal definition used for unknown type tags: no editable properties,
    one wildcard input port and a wildcard output port."""
    return NodeDefinition(
        type_name=type_name,
        input_ports=(
            PortDefinition(
                name=f"{INPUT_PORT_PREFIX}0",
                types=frozenset({ANY_TYPE}),
                is_input=True,
            ),
        ),
        output_port=PortDefinition(
            name=OUTPUT_PORT_NAME, types=frozenset({ANY_TYPE}), is_input=False
        ),
    )


class SchemaRegistry:
    """
    Lookup of node definitions keyed by type name.

    Lookup never raises for unknown types: get_node_definition() returns None
    and definition_for() degrades to fallback_definition().
    """

    def __init__(self, definitions: Iterable[NodeDefinition] = ()):
        self._definitions: dict[str, NodeDefinition] = {
            definition.type_name: definition for definition in definitions
        }

    @staticmethod
    def from_dict(data: dict) -> "SchemaRegistry":
        """
        Build a registry from a mapping of type name to definition body.

        Args:
            data: ``{type_name: {properties: {name: {type, required}},
                required: [names], kind, displayNameProperty, inputs, outputs}}``

        Raises:
            ValueError: If a definition body is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("Node definitions must be a mapping of type names.")
        definitions = [
            _definition_from_dict(type_name, body or {})
            for type_name, body in data.items()
        ]
        return SchemaRegistry(definitions)

    @staticmethod
    def from_file(path: str | Path) -> "SchemaRegistry":
        definitions_path = Path(path)
        if not definitions_path.is_file():
            raise FileNotFoundError(
                f"Node definitions file could not be resolved at {definitions_path}"
            )
        with open(definitions_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f.read()) or {}
        registry = SchemaRegistry.from_dict(data)
        logger.debug(
            f"Loaded {len(registry)} node definitions from {definitions_path}"
        )
        return registry

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._definitions

    def get_node_definition(self, type_name: str) -> Optional[NodeDefinition]:
        return self._definitions.get(type_name)

    def definition_for(self, type_name: str) -> NodeDefinition:
        definition = self._definitions.get(type_name)
        if definition is None:
            logger.debug(f"No definition for node type '{type_name}', using fallback")
            return fallback_definition(type_name)
        return definition

    def definitions(self) -> list[NodeDefinition]:
        return list(self._definitions.values())


def _definition_from_dict(type_name: str, body: dict) -> NodeDefinition:
    if not isinstance(body, dict):
        raise ValueError(f"Definition of '{type_name}' must be a mapping.")

    kind = body.get("kind")
    try:
        node_kind = NodeKind(kind) if kind else None
    except ValueError:
        raise ValueError(f"Definition of '{type_name}' has unknown kind '{kind}'.")

    input_ports = []
    for index, port in enumerate(body.get("inputs") or []):
        types = port.get("types") if isinstance(port, dict) else None
        if not types:
            raise ValueError(
                f"Input port {index} of '{type_name}' declares no accepted types."
            )
        input_ports.append(
            PortDefinition(
                name=port.get("name") or f"{INPUT_PORT_PREFIX}{index}",
                types=frozenset(types),
                is_input=True,
            )
        )

    outputs = body.get("outputs") or []
    output_port = (
        PortDefinition(name=OUTPUT_PORT_NAME, types=frozenset(outputs), is_input=False)
        if outputs
        else None
    )

    return NodeDefinition(
        type_name=type_name,
        kind=node_kind,
        properties=_properties_from_dict(
            type_name, body.get("properties") or {}, body.get("required") or []
        ),
        display_name_property=body.get("displayNameProperty", "name"),
        input_ports=tuple(input_ports),
        output_port=output_port,
        description=body.get("description", ""),
    )


def _properties_from_dict(
    owner: str, properties: dict[str, Any], required: Iterable[str]
) -> tuple[PropertyDefinition, ...]:
    required_names = set(required)
    unknown = required_names - set(properties)
    if unknown:
        raise ValueError(
            f"'{owner}' marks undeclared properties as required: {sorted(unknown)}"
        )

    result = []
    for name, prop_data in properties.items():
        prop_data = prop_data or {}
        if not isinstance(prop_data, dict):
            raise ValueError(f"Property '{owner}.{name}' must be a mapping.")
        # "required" is a flag on leaf properties and a list of child names on objects
        required_value = prop_data.get("required")
        required_flag = required_value is True
        child_required = required_value if isinstance(required_value, list) else []
        result.append(
            PropertyDefinition(
                name=name,
                type=prop_data.get("type", "string"),
                required=required_flag or name in required_names,
                allowed_values=tuple(str(value) for value in prop_data.get("enum") or ()),
                properties=_properties_from_dict(
                    f"{owner}.{name}",
                    prop_data.get("properties") or {},
                    child_required,
                )
                if prop_data.get("properties")
                else (),
            )
        )
    return tuple(result)
