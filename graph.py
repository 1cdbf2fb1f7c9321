import copy
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Optional

from schema_registry import ANY_TYPE, SchemaRegistry
from topology import (
    MEDIA_TYPE_SELECTOR,
    SELECTOR_OPERATOR_IS,
    NodeDescriptor,
    NodeInput,
    NodeKind,
    OutputSelector,
    ParameterDeclaration,
    TopologyDocument,
    dump_value,
    parse_value,
)

logger = logging.getLogger(__name__)

# Distance between two nodes sharing a rank and between two consecutive ranks.
LAYOUT_NODE_SPACING = float(os.environ.get("LAYOUT_NODE_SPACING", "120"))
LAYOUT_RANK_SPACING = float(os.environ.get("LAYOUT_RANK_SPACING", "300"))

IDENTITY_TRANSFORM: tuple[float, ...] = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


class NodeState(str, Enum):
    """Selection/highlight state of a canvas node."""

    DEFAULT = "default"
    SELECTED = "selected"
    HIGHLIGHTED = "highlighted"


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class Port:
    """
    Typed connection point of a canvas node.

    Attributes:
        id: Port identifier, unique within its node (the definition port name).
        types: Data types accepted (input) or produced (output) by the port.
        is_input: True for input ports, False for the output port.
    """

    id: str
    types: frozenset[str]
    is_input: bool


@dataclass(frozen=True)
class Node:
    """
    Single node of the canvas model.

    Attributes:
        id: Canvas-local identifier, stable for the lifetime of the canvas.
        name: Node name, mirrors the topology node descriptor name.
        type: Type tag selecting a schema registry definition.
        kind: Topology collection the node is serialized into.
        properties: Property bag copied verbatim from the node descriptor.
            Parameter references stay ParameterReference instances.
        position: Canvas position.
        ports: Ports derived from the schema registry definition.
        state: Selection/highlight state.

    Nodes are never mutated in place: every edit goes through a Graph.with_*
    method that returns a new snapshot.
    """

    id: str
    name: str
    type: str
    kind: NodeKind
    properties: dict[str, Any] = field(default_factory=dict)
    position: Position = Position(0.0, 0.0)
    ports: tuple[Port, ...] = ()
    state: NodeState = NodeState.DEFAULT

    @property
    def input_ports(self) -> tuple[Port, ...]:
        return tuple(port for port in self.ports if port.is_input)

    @property
    def output_port(self) -> Optional[Port]:
        for port in self.ports:
            if not port.is_input:
                return port
        return None

    def get_port(self, port_id: str) -> Optional[Port]:
        for port in self.ports:
            if port.id == port_id:
                return port
        return None


@dataclass(frozen=True)
class Edge:
    """
    Directed connection from the output port of ``source`` to an input port
    of ``target`` (both canvas node ids).

    Attributes:
        types: Data types allowed over this connection.
        inherit_types: True when the types were not chosen explicitly and
            follow from the port types; such edges serialize without output
            selectors.
        other_selectors: Output selectors that do not select a media type,
            carried through unchanged.
    """

    id: str
    source: str
    source_port: str
    target: str
    target_port: str
    types: tuple[str, ...] = ()
    inherit_types: bool = True
    other_selectors: tuple[OutputSelector, ...] = ()


@dataclass(frozen=True)
class ZoomPanSettings:
    transform_matrix: tuple[float, ...] = IDENTITY_TRANSFORM


@dataclass(frozen=True)
class Graph:
    """
    Immutable snapshot of the editable canvas model.

    Besides nodes and edges the snapshot carries the topology level fields
    (name, description, parameter declarations) so that it can be mapped back
    to a complete TopologyDocument, plus view-only state (orientation and
    zoom/pan) which has no meaning in the topology.
    """

    name: str = ""
    description: Optional[str] = None
    parameters: tuple[ParameterDeclaration, ...] = ()
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    horizontal: bool = True
    zoom_pan: ZoomPanSettings = ZoomPanSettings()

    # ------------------------------------------------------------------
    # Topology mapping
    # ------------------------------------------------------------------

    @staticmethod
    def from_topology(
        topology: TopologyDocument,
        registry: SchemaRegistry,
        horizontal: bool = True,
        positions: Optional[dict[str, Position]] = None,
        zoom_pan: Optional[ZoomPanSettings] = None,
    ) -> "Graph":
        """
        Convert a topology document into a canvas model.

        Args:
            topology: Topology to convert.
            registry: Registry used to derive the ports of every node.
            horizontal: Orientation used by the auto-layout.
            positions: Previously known positions keyed by node name. Nodes
                found here keep their position, the others are auto-laid out.
            zoom_pan: View transform to carry over.

        Returns:
            Graph: New canvas snapshot.

        Raises:
            ValueError: If node names are not unique or an input references
                an unknown node.

        Invariants:
          * Node IDs are assigned sequentially starting from 0 in declaration
            order (sources, processors, sinks).
          * Edge IDs are sequential in the order targets and their inputs are
            declared.
          * Edges without explicit media type selectors inherit the types
            shared by the two ports they connect.
        """
        topology.check_references()
        logger.debug(f"Converting topology '{topology.name}' to canvas")

        nodes: list[Node] = []
        ids_by_name: dict[str, str] = {}
        for index, descriptor in enumerate(topology.nodes):
            definition = registry.definition_for(descriptor.type)
            node = Node(
                id=str(index),
                name=descriptor.name,
                type=descriptor.type,
                kind=descriptor.kind,
                properties=copy.deepcopy(descriptor.properties),
                ports=tuple(
                    Port(id=port.name, types=port.types, is_input=port.is_input)
                    for port in definition.ports
                ),
            )
            nodes.append(node)
            ids_by_name[descriptor.name] = node.id

        nodes_by_id = {node.id: node for node in nodes}
        edges: list[Edge] = []
        for descriptor in topology.nodes:
            target = nodes_by_id[ids_by_name[descriptor.name]]
            for node_input in descriptor.inputs:
                source = nodes_by_id[ids_by_name[node_input.node_name]]
                edges.append(_edge_from_input(str(len(edges)), source, target, node_input))

        graph = Graph(
            name=topology.name,
            description=topology.description,
            parameters=tuple(copy.deepcopy(topology.parameters)),
            nodes=tuple(nodes),
            edges=tuple(edges),
            horizontal=horizontal,
            zoom_pan=zoom_pan or ZoomPanSettings(),
        )
        return graph._with_layout(positions or {})

    def to_topology(self) -> TopologyDocument:
        """
        Convert the canvas model back into a topology document.

        Each node becomes a node descriptor with its property bag copied
        verbatim (parameter references included); each edge becomes an input
        on its target node referencing the source node by name.

        Raises:
            ValueError: If node names are not unique or an edge references a
                node that is not part of the graph.
        """
        names_by_id = {node.id: node.name for node in self.nodes}
        inputs_by_target: dict[str, list[NodeInput]] = defaultdict(list)
        for edge in self.edges:
            if edge.source not in names_by_id or edge.target not in names_by_id:
                raise ValueError(
                    f"Edge '{edge.id}' references a node that is not on the canvas."
                )
            selectors: list[OutputSelector] = []
            if not edge.inherit_types:
                selectors = [
                    OutputSelector(MEDIA_TYPE_SELECTOR, SELECTOR_OPERATOR_IS, media_type)
                    for media_type in edge.types
                ]
            selectors.extend(edge.other_selectors)
            inputs_by_target[edge.target].append(
                NodeInput(node_name=names_by_id[edge.source], output_selectors=selectors)
            )

        topology = TopologyDocument(
            name=self.name,
            description=self.description,
            parameters=copy.deepcopy(list(self.parameters)),
            nodes=[
                NodeDescriptor(
                    name=node.name,
                    type=node.type,
                    kind=node.kind,
                    properties=copy.deepcopy(node.properties),
                    inputs=inputs_by_target.get(node.id, []),
                )
                for node in self.nodes
            ],
        )
        topology.check_references()
        logger.debug(f"Converted canvas to topology '{topology.name}'")
        return topology

    # ------------------------------------------------------------------
    # Plain dictionary conversion
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(data: dict) -> "Graph":
        """
        Create a Graph from a plain dictionary (for example deserialized JSON).

        The dictionary is expected to follow the structure produced by
        Graph.to_dict(). ``${name}`` strings inside node properties become
        ParameterReference instances again.

        Raises:
            ValueError: If a required key is missing or an edge references an
                unknown node.
        """
        try:
            nodes = tuple(
                Node(
                    id=str(node["id"]),
                    name=node["name"],
                    type=node["type"],
                    kind=NodeKind(node["kind"]),
                    properties=parse_value(node.get("properties") or {}),
                    position=Position(
                        float(node.get("position", {}).get("x", 0.0)),
                        float(node.get("position", {}).get("y", 0.0)),
                    ),
                    ports=tuple(
                        Port(
                            id=port["id"],
                            types=frozenset(port["types"]),
                            is_input=bool(port["is_input"]),
                        )
                        for port in node.get("ports") or []
                    ),
                    state=NodeState(node.get("state", NodeState.DEFAULT.value)),
                )
                for node in data.get("nodes") or []
            )
            edges = tuple(
                Edge(
                    id=str(edge["id"]),
                    source=str(edge["source"]),
                    source_port=edge["source_port"],
                    target=str(edge["target"]),
                    target_port=edge["target_port"],
                    types=tuple(edge.get("types") or ()),
                    inherit_types=bool(edge.get("inherit_types", True)),
                    other_selectors=tuple(
                        OutputSelector(
                            selector["property"], selector["operator"], selector["value"]
                        )
                        for selector in edge.get("other_selectors") or []
                    ),
                )
                for edge in data.get("edges") or []
            )
            parameters = tuple(
                ParameterDeclaration(
                    name=parameter["name"],
                    type=parameter.get("type", "String"),
                    description=parameter.get("description"),
                    default=parameter.get("default"),
                )
                for parameter in data.get("parameters") or []
            )
        except KeyError as e:
            raise ValueError(f"Canvas data is missing required key {e}")

        node_ids = {node.id for node in nodes}
        for edge in edges:
            if edge.source not in node_ids or edge.target not in node_ids:
                raise ValueError(
                    f"Edge '{edge.id}' references a node that is not on the canvas."
                )

        zoom_pan = data.get("zoom_pan") or {}
        return Graph(
            name=data.get("name") or "",
            description=data.get("description"),
            parameters=parameters,
            nodes=nodes,
            edges=edges,
            horizontal=bool(data.get("horizontal", True)),
            zoom_pan=ZoomPanSettings(
                tuple(zoom_pan.get("transform_matrix") or IDENTITY_TRANSFORM)
            ),
        )

    def to_dict(self) -> dict:
        """Convert the Graph into a plain JSON-serializable dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": [
                {
                    "name": parameter.name,
                    "type": parameter.type,
                    "description": parameter.description,
                    "default": parameter.default,
                }
                for parameter in self.parameters
            ],
            "nodes": [
                {
                    "id": node.id,
                    "name": node.name,
                    "type": node.type,
                    "kind": node.kind.value,
                    "properties": dump_value(node.properties),
                    "position": {"x": node.position.x, "y": node.position.y},
                    "ports": [
                        {
                            "id": port.id,
                            "types": sorted(port.types),
                            "is_input": port.is_input,
                        }
                        for port in node.ports
                    ],
                    "state": node.state.value,
                }
                for node in self.nodes
            ],
            "edges": [
                {
                    "id": edge.id,
                    "source": edge.source,
                    "source_port": edge.source_port,
                    "target": edge.target,
                    "target_port": edge.target_port,
                    "types": list(edge.types),
                    "inherit_types": edge.inherit_types,
                    "other_selectors": [
                        {
                            "property": selector.property,
                            "operator": selector.operator,
                            "value": selector.value,
                        }
                        for selector in edge.other_selectors
                    ],
                }
                for edge in self.edges
            ],
            "horizontal": self.horizontal,
            "zoom_pan": {"transform_matrix": list(self.zoom_pan.transform_matrix)},
        }

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_node_by_name(self, name: str) -> Optional[Node]:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def edge_endpoints(self, edge: Edge) -> tuple[str, str]:
        """Return (source node name, target node name) of an edge."""
        source = self.get_node(edge.source)
        target = self.get_node(edge.target)
        if source is None or target is None:
            raise ValueError(f"Edge '{edge.id}' references a node that is not on the canvas.")
        return source.name, target.name

    def positions(self) -> dict[str, Position]:
        return {node.name: node.position for node in self.nodes}

    # ------------------------------------------------------------------
    # Edits (each returns a new snapshot)
    # ------------------------------------------------------------------

    def with_meta(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Iterable[ParameterDeclaration]] = None,
    ) -> "Graph":
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if parameters is not None:
            changes["parameters"] = tuple(copy.deepcopy(list(parameters)))
        return replace(self, **changes)

    def with_node_renamed(self, old_name: str, new_name: str) -> "Graph":
        """
        Rename a node.

        Edges reference nodes by canvas id, so every edge touching the node
        resolves to the new name (and serializes with it) without being
        rewritten; no other edge is affected.

        The new name is not checked; a name shared with another node is
        reported by validation.

        Raises:
            ValueError: If no node is named ``old_name``.
        """
        node = self.get_node_by_name(old_name)
        if node is None:
            raise ValueError(f"Node '{old_name}' not found.")
        if new_name == old_name:
            return self
        return self._replace_node(replace(node, name=new_name))

    def with_edge_types(self, edge_id: str, types: Iterable[str]) -> "Graph":
        """Set the allowed data types of an edge explicitly."""
        edge = self.get_edge(edge_id)
        if edge is None:
            raise ValueError(f"Edge '{edge_id}' not found.")
        new_edge = replace(edge, types=tuple(types), inherit_types=False)
        return replace(
            self,
            edges=tuple(new_edge if e.id == edge_id else e for e in self.edges),
        )

    def with_node_added(
        self,
        node_type: str,
        registry: SchemaRegistry,
        name: Optional[str] = None,
        properties: Optional[dict[str, Any]] = None,
        position: Optional[Position] = None,
    ) -> "Graph":
        """
        Add a node of the given type.

        The node kind comes from the registry definition (processor when the
        type is unknown or the definition declares none). Without an explicit
        name a unique one is derived from the type tag.
        """
        definition = registry.definition_for(node_type)
        if name is None:
            name = self._unique_node_name(node_type)
        elif self.get_node_by_name(name) is not None:
            raise ValueError(f"Node name '{name}' is already in use.")

        node = Node(
            id=_next_id(node.id for node in self.nodes),
            name=name,
            type=node_type,
            kind=definition.kind or NodeKind.PROCESSOR,
            properties=copy.deepcopy(properties or {}),
            ports=tuple(
                Port(id=port.name, types=port.types, is_input=port.is_input)
                for port in definition.ports
            ),
        )
        graph = replace(self, nodes=self.nodes + (node,))
        if position is not None:
            return graph.with_node_moved(node.id, position)
        return graph._with_layout(self.positions())

    def with_node_removed(self, node_id: str) -> "Graph":
        """Remove a node and every edge attached to it."""
        if self.get_node(node_id) is None:
            raise ValueError(f"Node '{node_id}' not found.")
        return replace(
            self,
            nodes=tuple(node for node in self.nodes if node.id != node_id),
            edges=tuple(
                edge
                for edge in self.edges
                if edge.source != node_id and edge.target != node_id
            ),
        )

    def with_edge_added(
        self,
        source_id: str,
        target_id: str,
        target_port: Optional[str] = None,
    ) -> "Graph":
        """
        Connect the output port of ``source_id`` to an input port of ``target_id``.

        Without an explicit target port the first input port sharing a type
        with the source output is used (or the first input port at all).
        Incompatible connections are accepted here and reported by the
        validation engine.

        Raises:
            ValueError: If a node or port does not exist, the source has no
                output port or the target has no input port.
        """
        source = self.get_node(source_id)
        target = self.get_node(target_id)
        if source is None or target is None:
            raise ValueError(f"Cannot connect '{source_id}' to '{target_id}': node not found.")
        if source.output_port is None:
            raise ValueError(f"Node '{source.name}' has no output port.")
        if not target.input_ports:
            raise ValueError(f"Node '{target.name}' has no input port.")

        if target_port is None:
            port = _pick_target_port(source.output_port, target.input_ports)
        else:
            port = target.get_port(target_port)
            if port is None or not port.is_input:
                raise ValueError(
                    f"Node '{target.name}' has no input port '{target_port}'."
                )

        edge = Edge(
            id=_next_id(edge.id for edge in self.edges),
            source=source.id,
            source_port=source.output_port.id,
            target=target.id,
            target_port=port.id,
            types=intersect_types(source.output_port.types, port.types),
        )
        return replace(self, edges=self.edges + (edge,))

    def with_node_properties(self, node_id: str, properties: dict[str, Any]) -> "Graph":
        node = self.get_node(node_id)
        if node is None:
            raise ValueError(f"Node '{node_id}' not found.")
        return self._replace_node(replace(node, properties=copy.deepcopy(properties)))

    def with_node_moved(self, node_id: str, position: Position) -> "Graph":
        node = self.get_node(node_id)
        if node is None:
            raise ValueError(f"Node '{node_id}' not found.")
        return self._replace_node(replace(node, position=position))

    def with_selection(self, node_ids: Iterable[str]) -> "Graph":
        selected = set(node_ids)
        return replace(
            self,
            nodes=tuple(
                replace(
                    node,
                    state=NodeState.SELECTED if node.id in selected else NodeState.DEFAULT,
                )
                for node in self.nodes
            ),
        )

    def relayout(self, horizontal: Optional[bool] = None) -> "Graph":
        """Lay out every node again, discarding all known positions."""
        graph = self if horizontal is None else replace(self, horizontal=horizontal)
        return graph._with_layout({})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _replace_node(self, new_node: Node) -> "Graph":
        return replace(
            self,
            nodes=tuple(
                new_node if node.id == new_node.id else node for node in self.nodes
            ),
        )

    def _unique_node_name(self, node_type: str) -> str:
        base = node_type.rsplit(".", 1)[-1].lstrip("#") or "node"
        base = base[0].lower() + base[1:]
        existing = {node.name for node in self.nodes}
        index = 1
        while f"{base}{index}" in existing:
            index += 1
        return f"{base}{index}"

    def _with_layout(self, known_positions: dict[str, Position]) -> "Graph":
        computed = auto_layout(self.nodes, self.edges, self.horizontal)
        nodes = tuple(
            replace(node, position=known_positions.get(node.name, computed[node.id]))
            for node in self.nodes
        )
        return replace(self, nodes=nodes)


def intersect_types(
    source_types: Iterable[str], target_types: Iterable[str]
) -> tuple[str, ...]:
    """Return the data types two ports have in common, ANY_TYPE matching all."""
    source = frozenset(source_types)
    target = frozenset(target_types)
    if ANY_TYPE in source and ANY_TYPE in target:
        return (ANY_TYPE,)
    if ANY_TYPE in source:
        return tuple(sorted(target))
    if ANY_TYPE in target:
        return tuple(sorted(source))
    return tuple(sorted(source & target))


def types_compatible(types: Iterable[str], port_types: Iterable[str]) -> bool:
    """True if every type is accepted by a port declaring ``port_types``."""
    port = frozenset(port_types)
    if ANY_TYPE in port:
        return True
    return all(item in port for item in types)


def auto_layout(
    nodes: Iterable[Node], edges: Iterable[Edge], horizontal: bool = True
) -> dict[str, Position]:
    """
    Compute a deterministic position for every node.

    Algorithm:
      1. Rank nodes by their longest input path (Kahn's algorithm, nodes
         without inputs have rank 0).
      2. Nodes left unranked because they sit on a cycle are placed one rank
         after the deepest ranked node.
      3. Within a rank nodes keep declaration order.
      4. Ranks are laid out along x (horizontal) or y (vertical).

    Returns:
        dict[str, Position]: Position per node id.
    """
    node_list = list(nodes)
    order = {node.id: index for index, node in enumerate(node_list)}
    outgoing: dict[str, list[str]] = defaultdict(list)
    indegree = {node.id: 0 for node in node_list}
    for edge in edges:
        if edge.source in indegree and edge.target in indegree:
            outgoing[edge.source].append(edge.target)
            indegree[edge.target] += 1

    ranks = {node_id: 0 for node_id in indegree}
    ready = [node.id for node in node_list if indegree[node.id] == 0]
    ranked: set[str] = set()
    while ready:
        ready.sort(key=order.__getitem__)
        current = ready.pop(0)
        ranked.add(current)
        for target in outgoing[current]:
            ranks[target] = max(ranks[target], ranks[current] + 1)
            indegree[target] -= 1
            if indegree[target] == 0:
                ready.append(target)

    unranked = [node.id for node in node_list if node.id not in ranked]
    if unranked:
        logger.debug(f"Nodes on a cycle placed after the last rank: {unranked}")
        cycle_rank = max((ranks[node_id] for node_id in ranked), default=-1) + 1
        for node_id in unranked:
            ranks[node_id] = cycle_rank

    by_rank: dict[int, list[str]] = defaultdict(list)
    for node in node_list:
        by_rank[ranks[node.id]].append(node.id)

    positions: dict[str, Position] = {}
    for rank, node_ids in by_rank.items():
        for index, node_id in enumerate(node_ids):
            along = rank * LAYOUT_RANK_SPACING
            across = index * LAYOUT_NODE_SPACING
            positions[node_id] = (
                Position(along, across) if horizontal else Position(across, along)
            )
    return positions


def _edge_from_input(edge_id: str, source: Node, target: Node, node_input: NodeInput) -> Edge:
    source_port = source.output_port
    source_types = source_port.types if source_port else frozenset()
    target_port = _pick_target_port(source_port, target.input_ports)

    media_types = node_input.media_types()
    other_selectors = tuple(
        selector
        for selector in node_input.output_selectors
        if not (
            selector.property == MEDIA_TYPE_SELECTOR
            and selector.operator == SELECTOR_OPERATOR_IS
        )
    )
    if media_types:
        types = tuple(media_types)
        inherit = False
        # Prefer a port accepting every selected type
        for port in target.input_ports:
            if types_compatible(types, port.types):
                target_port = port
                break
    else:
        types = intersect_types(
            source_types, target_port.types if target_port else frozenset()
        )
        inherit = True

    return Edge(
        id=edge_id,
        source=source.id,
        source_port=source_port.id if source_port else "",
        target=target.id,
        target_port=target_port.id if target_port else "",
        types=types,
        inherit_types=inherit,
        other_selectors=other_selectors,
    )


def _pick_target_port(
    source_port: Optional[Port], input_ports: tuple[Port, ...]
) -> Optional[Port]:
    if not input_ports:
        return None
    if source_port is not None:
        for port in input_ports:
            if intersect_types(source_port.types, port.types):
                return port
    return input_ports[0]


def _next_id(existing_ids: Iterable[str]) -> str:
    numeric = [int(item) for item in existing_ids if item.isdigit()]
    return str(max(numeric, default=-1) + 1)
