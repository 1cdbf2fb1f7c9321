"""
Editing sessions for topologies and topology instances.

A session owns the current canvas snapshot, coordinates validation and
talks to the host through a HostChannel. Every edit swaps the snapshot for
a new one and notifies listeners with ``(event, snapshot)``; listeners
always re-read from the snapshot they are handed.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from graph import Edge, Graph, Node, Position
from host_channel import HostChannel, MessageName
from parameters import Parameter, ParameterResolver
from schema_registry import SchemaRegistry
from topology import InstanceDocument, TopologyDocument
from validation import (
    NAME_CHECK_TIMEOUT,
    ServerError,
    ValidationEngine,
    ValidationError,
)

logger = logging.getLogger("session")


class SessionState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    VALIDATING = "validating"
    CLOSED = "closed"


class PageType(str, Enum):
    GRAPH = "graph"
    INSTANCE = "instance"


class SessionBusyError(RuntimeError):
    """Raised when a save is requested while another one is in flight."""


class SessionClosedError(RuntimeError):
    """Raised when a closed session is used."""


class UnsavedChangesError(RuntimeError):
    """Raised when loading a topology would discard unsaved edits."""


class EventKind(str, Enum):
    CANVAS_CHANGED = "canvasChanged"
    NODE_RENAMED = "nodeRenamed"
    EDGE_CHANGED = "edgeChanged"
    TOPOLOGY_LOADED = "topologyLoaded"
    ERRORS_CHANGED = "errorsChanged"
    STATE_CHANGED = "stateChanged"


@dataclass(frozen=True)
class SessionEvent:
    """
    Notification sent to session listeners.

    Attributes:
        kind: What happened.
        edge: For EDGE_CHANGED, the edge as found in the new snapshot.
        node: For node edits, the node as found in the new snapshot.
        state: For STATE_CHANGED, the new session state.
    """

    kind: EventKind
    edge: Optional[Edge] = None
    node: Optional[Node] = None
    state: Optional[SessionState] = None


Listener = Callable[[SessionEvent, Graph], None]


class GraphSession:
    """
    Editing session of a single topology.

    State machine::

        clean --edit--> dirty --save--> validating --accepted--> clean -> closed
                                             |
                                             +--rejected--> dirty (with errors)

    Position and orientation changes are view-only and leave the state
    untouched.
    """

    def __init__(
        self,
        channel: HostChannel,
        registry: SchemaRegistry,
        topology: Optional[TopologyDocument] = None,
        is_edit_mode: bool = False,
        horizontal: bool = True,
        timeout: float = NAME_CHECK_TIMEOUT,
    ):
        self.channel = channel
        self.registry = registry
        self.is_edit_mode = is_edit_mode
        # In edit mode the topology already exists under its (read-only) name.
        self.engine = ValidationEngine(
            registry,
            name_checker=None if is_edit_mode else self._check_name_available,
            timeout=timeout,
        )
        self._initial = Graph.from_topology(
            topology or TopologyDocument(name=""), registry, horizontal
        )
        self._canvas = self._initial
        self._state = SessionState.CLEAN
        self._listeners: list[Listener] = []
        self.engine.names.set_current(self._canvas.name)
        logger.debug(
            f"Opened graph session for '{self._canvas.name}' "
            f"(edit mode: {is_edit_mode})"
        )

    @property
    def canvas(self) -> Graph:
        """Current canvas snapshot."""
        return self._canvas

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def errors(self) -> list[ValidationError]:
        return self.engine.errors

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable removing it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def rename(self, old_name: str, new_name: str) -> Node:
        """
        Rename a node. Every edge touching it follows the new name; the
        rename is not validated here.
        """
        canvas = self._canvas.with_node_renamed(old_name, new_name)
        node = canvas.get_node(self._canvas.get_node_by_name(old_name).id)
        self._apply(canvas, SessionEvent(EventKind.NODE_RENAMED, node=node))
        return node

    def reconnect(self, edge_id: str, types: list[str]) -> Edge:
        """
        Set the data types allowed over an edge.

        Listeners receive the edge object of the new snapshot, so a panel
        showing the edge can simply re-render with it.
        """
        canvas = self._canvas.with_edge_types(edge_id, types)
        edge = canvas.get_edge(edge_id)
        self._apply(canvas, SessionEvent(EventKind.EDGE_CHANGED, edge=edge))
        return edge

    def set_name(self, name: str) -> None:
        """
        Set the topology name and start checking its availability.

        Raises:
            ValueError: In edit mode, where the name is read-only.
        """
        self._ensure_open()
        if self.is_edit_mode:
            raise ValueError("Topology name cannot be changed in edit mode.")
        self._apply(self._canvas.with_meta(name=name), SessionEvent(EventKind.CANVAS_CHANGED))
        self.engine.name_changed(name)

    def set_description(self, description: str) -> None:
        self._apply(
            self._canvas.with_meta(description=description),
            SessionEvent(EventKind.CANVAS_CHANGED),
        )

    def add_node(
        self,
        node_type: str,
        name: Optional[str] = None,
        properties: Optional[dict[str, Any]] = None,
        position: Optional[Position] = None,
    ) -> Node:
        canvas = self._canvas.with_node_added(
            node_type, self.registry, name=name, properties=properties, position=position
        )
        node = canvas.nodes[-1]
        self._apply(canvas, SessionEvent(EventKind.CANVAS_CHANGED, node=node))
        return node

    def remove_node(self, node_id: str) -> None:
        self._apply(
            self._canvas.with_node_removed(node_id), SessionEvent(EventKind.CANVAS_CHANGED)
        )

    def connect(
        self, source_id: str, target_id: str, target_port: Optional[str] = None
    ) -> Edge:
        canvas = self._canvas.with_edge_added(source_id, target_id, target_port)
        edge = canvas.edges[-1]
        self._apply(canvas, SessionEvent(EventKind.EDGE_CHANGED, edge=edge))
        return edge

    def set_node_properties(self, node_id: str, properties: dict[str, Any]) -> Node:
        canvas = self._canvas.with_node_properties(node_id, properties)
        node = canvas.get_node(node_id)
        self._apply(canvas, SessionEvent(EventKind.CANVAS_CHANGED, node=node))
        return node

    def move_node(self, node_id: str, position: Position) -> None:
        self._apply(
            self._canvas.with_node_moved(node_id, position),
            SessionEvent(EventKind.CANVAS_CHANGED),
            dirty=False,
        )

    def toggle_orientation(self) -> None:
        """Switch between horizontal and vertical layout (full re-layout)."""
        self._apply(
            self._canvas.relayout(not self._canvas.horizontal),
            SessionEvent(EventKind.CANVAS_CHANGED),
            dirty=False,
        )

    def apply_canvas(self, canvas: Graph) -> None:
        """Replace the snapshot wholesale with one produced by the canvas engine."""
        self._ensure_open()
        if self.is_edit_mode and canvas.name != self._canvas.name:
            raise ValueError("Topology name cannot be changed in edit mode.")
        name_changed = canvas.name != self._canvas.name
        self._apply(canvas, SessionEvent(EventKind.CANVAS_CHANGED))
        if name_changed:
            self.engine.name_changed(canvas.name)

    def load_topology(self, topology: TopologyDocument, discard_changes: bool = False) -> None:
        """
        Replace the canvas with a new topology, for example a sample.

        In edit mode the current topology name is kept.

        Raises:
            UnsavedChangesError: If there are unsaved edits and
                ``discard_changes`` is False.
        """
        self._ensure_open()
        if self._state == SessionState.VALIDATING:
            raise SessionBusyError("Cannot load a topology while a save is in flight.")
        if self._state == SessionState.DIRTY and not discard_changes:
            raise UnsavedChangesError("Loading a topology would discard unsaved edits.")

        canvas = Graph.from_topology(
            topology,
            self.registry,
            horizontal=self._canvas.horizontal,
            zoom_pan=self._canvas.zoom_pan,
        )
        if self.is_edit_mode:
            canvas = canvas.with_meta(name=self._canvas.name)
        self.engine.clear()
        self._canvas = canvas
        self.engine.name_changed(canvas.name)
        logger.debug(f"Loaded topology '{topology.name}' into session")
        self._notify(SessionEvent(EventKind.TOPOLOGY_LOADED))
        self._set_state(SessionState.CLEAN)

    # ------------------------------------------------------------------
    # Validation / save / cancel
    # ------------------------------------------------------------------

    def validate_local(self) -> list[ValidationError]:
        """Validate the current snapshot using only cached name results."""
        self._ensure_open()
        errors = self.engine.validate_local(
            self._canvas, check_name=not self.is_edit_mode
        )
        self._notify(SessionEvent(EventKind.ERRORS_CHANGED))
        return errors

    async def validate(self) -> list[ValidationError]:
        """Validate the current snapshot, awaiting the name check if needed."""
        self._ensure_open()
        errors = await self.engine.validate(self._canvas, check_name=not self.is_edit_mode)
        self._notify(SessionEvent(EventKind.ERRORS_CHANGED))
        return errors

    async def save(self) -> bool:
        """
        Validate the current snapshot and send it to the host.

        A snapshot with errors is refused without contacting the host. An
        accepted save leaves the session clean and closes it; a rejected one
        merges the server errors and returns the session to dirty.

        Returns:
            bool: True if the host accepted the topology.

        Raises:
            SessionBusyError: If a save is already in flight.
        """
        self._ensure_open()
        if self._state == SessionState.VALIDATING:
            raise SessionBusyError("A save is already in progress.")

        snapshot = self._canvas
        self._set_state(SessionState.VALIDATING)
        try:
            # A new attempt drops the errors of the previous rejection
            errors = await self.engine.validate(
                snapshot, external_errors=[], check_name=not self.is_edit_mode
            )
            if self._state == SessionState.CLOSED:
                return False
            if errors:
                logger.info(
                    f"Save of '{snapshot.name}' refused with {len(errors)} validation error(s)"
                )
                self._notify(SessionEvent(EventKind.ERRORS_CHANGED))
                self._set_state(SessionState.DIRTY)
                return False

            topology = snapshot.to_topology()
            response = await self.channel.request(
                MessageName.SAVE_GRAPH,
                topology.to_dict(),
                responses=[MessageName.GRAPH_SAVED, MessageName.FAILED_OPERATION_REASON],
            )
        except asyncio.CancelledError:
            if self._state == SessionState.CLOSED:
                logger.debug("Session closed while a save was in flight")
                return False
            self._set_state(SessionState.DIRTY)
            raise
        except Exception:
            logger.error(f"Save of '{snapshot.name}' failed", exc_info=True)
            self._set_state(SessionState.DIRTY)
            raise

        if self._state == SessionState.CLOSED:
            return False

        if response.name == MessageName.GRAPH_SAVED.value:
            logger.info(f"Topology '{topology.name}' saved")
            self.engine.clear()
            self._notify(SessionEvent(EventKind.ERRORS_CHANGED))
            self._set_state(SessionState.CLEAN)
            self._close()
            return True

        server_errors = [ServerError.from_dict(item) for item in response.data or []]
        logger.warning(
            f"Host rejected topology '{topology.name}' with {len(server_errors)} error(s)"
        )
        self.engine.validate_local(
            snapshot, external_errors=server_errors, check_name=not self.is_edit_mode
        )
        self._notify(SessionEvent(EventKind.ERRORS_CHANGED))
        self._set_state(SessionState.DIRTY)
        return False

    def cancel(self) -> None:
        """
        Discard all edits and ask the host to dismiss the session.

        Idempotent: cancelling a closed session does nothing.
        """
        if self._state == SessionState.CLOSED:
            return
        self._canvas = self._initial
        self.engine.clear()
        self.channel.post(MessageName.CLOSE_WINDOW)
        self._close()
        self.channel.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _check_name_available(self, name: str) -> bool:
        response = await self.channel.request(MessageName.NAME_AVAILABLE_CHECK, name)
        return bool(response.data)

    def _ensure_open(self) -> None:
        if self._state == SessionState.CLOSED:
            raise SessionClosedError("The session is closed.")

    def _apply(self, canvas: Graph, event: SessionEvent, dirty: bool = True) -> None:
        self._ensure_open()
        self._canvas = canvas
        self._notify(event)
        if dirty and self._state == SessionState.CLEAN:
            self._set_state(SessionState.DIRTY)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Session state {self._state.value} -> {state.value}")
        self._state = state
        self._notify(SessionEvent(EventKind.STATE_CHANGED, state=state))

    def _close(self) -> None:
        self._set_state(SessionState.CLOSED)
        self._listeners = []

    def _notify(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            listener(event, self._canvas)


class InstanceSession:
    """
    Session creating or editing an instance of an existing topology.

    The topology itself is read-only here; only the instance name,
    description and parameter values can change.
    """

    def __init__(
        self,
        channel: HostChannel,
        registry: SchemaRegistry,
        topology: TopologyDocument,
        instance: Optional[InstanceDocument] = None,
    ):
        self.channel = channel
        self.topology = topology
        self.canvas = Graph.from_topology(topology, registry)
        self.name = instance.name if instance else ""
        self.description = (instance.description if instance else None) or ""
        self.resolver = ParameterResolver.for_instance(topology, instance)
        self.engine = ValidationEngine(registry)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def parameters(self) -> list[Parameter]:
        return self.resolver.parameters

    @property
    def errors(self) -> list[ValidationError]:
        return self.engine.errors

    def set_name(self, name: str) -> None:
        self._ensure_open()
        self.name = name

    def set_description(self, description: str) -> None:
        self._ensure_open()
        self.description = description

    def bind(self, name: str, value: str) -> Parameter:
        self._ensure_open()
        return self.resolver.bind(name, value)

    def to_instance(self) -> InstanceDocument:
        return InstanceDocument(
            name=self.name,
            topology_name=self.topology.name,
            description=self.description,
            parameters=self.resolver.to_instance_parameters(),
        )

    def validate(self, activating: bool = False) -> list[ValidationError]:
        self._ensure_open()
        return self.engine.validate_instance(self.name, self.resolver, activating)

    def save(self) -> bool:
        """Send the instance to the host; refused when validation fails."""
        return self._submit(MessageName.SAVE_INSTANCE, activating=False)

    def save_and_activate(self) -> bool:
        """Send the instance for activation; every parameter must have a value."""
        return self._submit(MessageName.SAVE_AND_ACTIVATE, activating=True)

    def cancel(self) -> None:
        if self._closed:
            return
        self.channel.post(MessageName.CLOSE_WINDOW)
        self._closed = True
        self.channel.dispose()

    def _submit(self, message: MessageName, activating: bool) -> bool:
        errors = self.validate(activating)
        if errors:
            logger.info(
                f"Instance '{self.name}' refused with {len(errors)} validation error(s)"
            )
            return False
        self.channel.post(message, self.to_instance().to_dict())
        return True

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("The session is closed.")


async def open_session(
    channel: HostChannel,
    registry: SchemaRegistry,
    timeout: float = NAME_CHECK_TIMEOUT,
) -> "GraphSession | InstanceSession":
    """
    Ask the host for the initial page data and build the matching session.

    The host answers ``getInitialData`` with ``setInitialData`` carrying
    ``{"pageType": "graph" | "instance", "topology": ..., "instance": ...,
    "editMode": bool, "isHorizontal": bool}``.

    Raises:
        ValueError: If the page data is malformed or an instance page comes
            without its topology.
    """
    response = await channel.request(
        MessageName.GET_INITIAL_DATA, responses=[MessageName.SET_INITIAL_DATA]
    )
    data = response.data or {}
    if not isinstance(data, dict):
        raise ValueError("Initial data must be a mapping.")

    try:
        page_type = PageType(data.get("pageType") or PageType.GRAPH.value)
    except ValueError:
        raise ValueError(f"Unknown page type '{data.get('pageType')}'.")

    topology = (
        TopologyDocument.from_dict(data["topology"]) if data.get("topology") else None
    )
    logger.info(f"Opening {page_type.value} session")

    if page_type == PageType.INSTANCE:
        if topology is None:
            raise ValueError("An instance page requires the topology it instantiates.")
        instance = (
            InstanceDocument.from_dict(data["instance"]) if data.get("instance") else None
        )
        return InstanceSession(channel, registry, topology, instance)

    return GraphSession(
        channel,
        registry,
        topology,
        is_edit_mode=bool(data.get("editMode", False)),
        horizontal=bool(data.get("isHorizontal", True)),
        timeout=timeout,
    )
