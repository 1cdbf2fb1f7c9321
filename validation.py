"""
Validation of candidate topologies before they may be saved or activated.

The engine runs a fixed battery of checks and collects every applicable
error instead of stopping at the first one:

  1. name presence,
  2. name availability (remote, memoized per name),
  3. structural checks over the canvas model (required properties,
     parameter references, edge type compatibility),
  4. errors reported by the management plane on a rejected save.

A validation pass never raises; an empty error list is the only success
signal. Each pass replaces the previous error list wholesale.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from graph import Graph, types_compatible
from parameters import ParameterResolver
from schema_registry import SchemaRegistry
from topology import ParameterReference, TopologyDocument, iter_parameter_references

logger = logging.getLogger("validation")

# Seconds to wait for a name availability answer, 0 waits forever.
NAME_CHECK_TIMEOUT = float(os.environ.get("NAME_CHECK_TIMEOUT", "10"))

# Description keys, resolved to user-facing text by the localization layer.
TOPOLOGY_NAME_MISSING = "sidebarGraphTopologyNameMissing"
INSTANCE_NAME_MISSING = "sidebarGraphInstanceNameMissing"
NAME_NOT_AVAILABLE = "nameNotAvailableError"
NODE_NAME_DUPLICATED = "nodeNameDuplicatedError"
PROPERTY_MISSING = "nodePropertyMissingError"
PARAMETER_NOT_DECLARED = "parameterNotDeclaredError"
INPUT_NODE_MISSING = "inputNodeMissingError"
EDGE_TYPES_EMPTY = "edgeTypesEmptyError"
EDGE_TYPES_INCOMPATIBLE = "edgeTypesIncompatibleError"
PARAMETER_MISSING = "sidebarGraphInstanceParameterMissing"

NameChecker = Callable[[str], Awaitable[bool]]
Candidate = Union[TopologyDocument, Graph]


class ValidationErrorKind(str, Enum):
    MISSING_FIELD = "missing-field"
    NAME_ALREADY_IN_USE = "name-already-in-use"
    TYPE_MISMATCH = "type-mismatch"
    SERVER_ERROR = "server-error"


@dataclass(frozen=True)
class ValidationError:
    """
    Structured validation error.

    Attributes:
        kind: Error category.
        description: Description key (or the verbatim server message for
            server errors).
        node_name: Node the error applies to, None for topology level errors.
        property_path: Path of the offending property. Topology level errors
            use ("name",) / ("parameters", <name>).
        edge_id: Canvas edge the error applies to, for type mismatches.
    """

    kind: ValidationErrorKind
    description: str
    node_name: Optional[str] = None
    property_path: tuple[str, ...] = ()
    edge_id: Optional[str] = None

    @property
    def key(self) -> tuple:
        if self.kind == ValidationErrorKind.SERVER_ERROR:
            return (self.kind, self.node_name, self.property_path, self.description)
        return (self.kind, self.node_name, self.property_path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "description": self.description,
            "node_name": self.node_name,
            "property": list(self.property_path),
            "edge_id": self.edge_id,
        }

    @property
    def property_name(self) -> Optional[str]:
        return ".".join(self.property_path) if self.property_path else None


@dataclass(frozen=True)
class ServerError:
    """Error reported by the management plane when it rejects a save."""

    value: str
    node_name: Optional[str] = None
    node_property: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "ServerError":
        return ServerError(
            value=str(data.get("value", "")),
            node_name=data.get("nodeName"),
            node_property=data.get("nodeProperty"),
        )

    def to_validation_error(self) -> ValidationError:
        return ValidationError(
            kind=ValidationErrorKind.SERVER_ERROR,
            description=self.value,
            node_name=self.node_name,
            property_path=(self.node_property,) if self.node_property else (),
        )


def deduplicate(errors: Iterable[ValidationError]) -> list[ValidationError]:
    """Drop errors sharing (kind, node name, property) with an earlier one."""
    seen: set[tuple] = set()
    result = []
    for error in errors:
        if error.key in seen:
            continue
        seen.add(error.key)
        result.append(error)
    return result


class NameAvailabilityCache:
    """
    Memoized, asynchronous name availability check.

    * At most one remote check is in flight per name.
    * Results are remembered per name, so re-validating an unchanged name
      does not contact the host again.
    * A result is only kept when the checked name is still the current
      name; answers arriving after the name was edited are discarded.
    """

    def __init__(self, checker: Optional[NameChecker], timeout: float = NAME_CHECK_TIMEOUT):
        self._checker = checker
        self._timeout = timeout
        self._results: dict[str, bool] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self.current: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return self._checker is not None

    def set_current(self, name: str) -> None:
        if name != self.current:
            logger.debug(f"Current name changed from {self.current!r} to {name!r}")
        self.current = name

    def result_for(self, name: str) -> Optional[bool]:
        """Cached availability of ``name``, None when unknown or pending."""
        return self._results.get(name)

    def is_pending(self, name: str) -> bool:
        return name in self._pending

    def remember(self, name: str, available: bool) -> None:
        """Record an availability outcome obtained outside this cache."""
        self._results[name] = available

    def request(self, name: str) -> Optional[asyncio.Future]:
        """
        Start a check for ``name`` unless its result is known or pending.

        Must be called with a running event loop.
        """
        if not self.enabled or not name or name in self._results:
            return None
        pending = self._pending.get(name)
        if pending is not None:
            return pending
        task = asyncio.ensure_future(self._run_check(name))
        self._pending[name] = task
        return task

    async def check(self, name: str) -> Optional[bool]:
        """Return the availability of ``name``, awaiting a remote check if needed."""
        if name in self._results:
            return self._results[name]
        task = self.request(name)
        if task is None:
            return self._results.get(name)
        try:
            if self._timeout > 0:
                await asyncio.wait_for(asyncio.shield(task), self._timeout)
            else:
                await task
        except asyncio.TimeoutError:
            logger.warning(f"Name availability check for {name!r} timed out")
        return self._results.get(name)

    def forget(self, name: Optional[str] = None) -> None:
        """Drop the cached result for one name, or all of them."""
        if name is None:
            self._results.clear()
        else:
            self._results.pop(name, None)

    async def _run_check(self, name: str) -> Optional[bool]:
        try:
            available = bool(await self._checker(name))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error(f"Name availability check for {name!r} failed", exc_info=True)
            return None
        finally:
            self._pending.pop(name, None)

        if name != self.current:
            logger.debug(f"Discarding stale availability result for {name!r}")
            return None
        self._results[name] = available
        logger.debug(f"Name {name!r} available: {available}")
        return available


class ValidationEngine:
    """
    Runs the validation battery over candidate topologies.

    The engine keeps two pieces of state between passes: the name
    availability cache and the server errors of the last rejected save,
    remembered together with the payload that produced them. Everything else
    is recomputed from the candidate on every pass.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        name_checker: Optional[NameChecker] = None,
        timeout: float = NAME_CHECK_TIMEOUT,
    ):
        self.registry = registry
        self.names = NameAvailabilityCache(name_checker, timeout)
        self._server_errors: list[ValidationError] = []
        self._server_fingerprint: Optional[str] = None
        self._errors: list[ValidationError] = []

    @property
    def errors(self) -> list[ValidationError]:
        return list(self._errors)

    def name_changed(self, name: str) -> None:
        """
        Record an edit of the topology name and start checking it.

        Any result for the previous name stops being surfaced immediately,
        even before the new check completes.
        """
        self.names.set_current(name)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.names.request(name)

    async def validate(
        self,
        candidate: Candidate,
        external_errors: Optional[Iterable[ServerError]] = None,
        check_name: bool = True,
    ) -> list[ValidationError]:
        """
        Validate a candidate, awaiting the name availability check first.

        Args:
            candidate: Topology document or canvas snapshot to validate.
            external_errors: Errors reported by a rejected save. None means
                no new errors were supplied.
            check_name: False skips the remote availability check (used when
                the name is read-only, for example in edit mode).

        Returns:
            list[ValidationError]: Deduplicated errors in check order.
        """
        name = candidate.name
        self.names.set_current(name)
        if check_name and name and self.names.enabled:
            await self.names.check(name)
        return self.validate_local(candidate, external_errors, check_name=check_name)

    def validate_local(
        self,
        candidate: Candidate,
        external_errors: Optional[Iterable[ServerError]] = None,
        check_name: bool = True,
    ) -> list[ValidationError]:
        """Run the battery synchronously using only cached name results."""
        name = candidate.name
        self.names.set_current(name)
        errors: list[ValidationError] = []

        if not name:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.MISSING_FIELD,
                    description=TOPOLOGY_NAME_MISSING,
                    property_path=("name",),
                )
            )
        elif check_name and self.names.result_for(name) is False:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.NAME_ALREADY_IN_USE,
                    description=NAME_NOT_AVAILABLE,
                    property_path=("name",),
                )
            )

        errors.extend(self._structural_errors(candidate))
        errors.extend(self._merge_server_errors(candidate, external_errors))

        self._errors = deduplicate(errors)
        logger.debug(
            f"Validated '{name}': {len(self._errors)} error(s) "
            f"{[error.kind.value for error in self._errors]}"
        )
        return list(self._errors)

    def validate_instance(
        self, instance_name: str, resolver: ParameterResolver, activating: bool
    ) -> list[ValidationError]:
        """
        Validate an instance before it is saved or activated.

        The instance name must be non-empty; parameters are only required
        when the instance is being activated.
        """
        errors: list[ValidationError] = []
        if not instance_name:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.MISSING_FIELD,
                    description=INSTANCE_NAME_MISSING,
                    property_path=("name",),
                )
            )
        for parameter in resolver.validate(activating):
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.MISSING_FIELD,
                    description=PARAMETER_MISSING,
                    property_path=("parameters", parameter.name),
                )
            )
        self._errors = deduplicate(errors)
        return list(self._errors)

    def clear(self) -> None:
        """Forget the errors of the last pass and any remembered server errors."""
        self._errors = []
        self._server_errors = []
        self._server_fingerprint = None

    # ------------------------------------------------------------------
    # Structural checks
    # ------------------------------------------------------------------

    def _structural_errors(self, candidate: Candidate) -> list[ValidationError]:
        duplicates: list[ValidationError] = []
        if isinstance(candidate, Graph):
            graph = candidate
            duplicates = _duplicate_name_errors(graph.nodes)
        else:
            reference_errors = _reference_errors(candidate)
            if reference_errors:
                # The document cannot be mapped onto a canvas; check what can
                # be checked on the descriptors themselves.
                return reference_errors + self._node_errors(
                    candidate.nodes, candidate.parameters
                )
            graph = Graph.from_topology(candidate, self.registry)

        return (
            duplicates
            + self._node_errors(graph.nodes, graph.parameters)
            + self._edge_errors(graph)
        )

    def _node_errors(self, nodes: Iterable[Any], parameters: Iterable[Any]) -> list[ValidationError]:
        declared = {parameter.name for parameter in parameters}
        errors = []
        for node in nodes:
            definition = self.registry.definition_for(node.type)
            for path in definition.required_paths():
                if _is_missing(node, path, definition.display_name_property):
                    errors.append(
                        ValidationError(
                            kind=ValidationErrorKind.MISSING_FIELD,
                            description=PROPERTY_MISSING,
                            node_name=node.name,
                            property_path=path,
                        )
                    )
            for path, reference in iter_parameter_references(node.properties):
                if reference.name not in declared:
                    errors.append(
                        ValidationError(
                            kind=ValidationErrorKind.MISSING_FIELD,
                            description=PARAMETER_NOT_DECLARED,
                            node_name=node.name,
                            property_path=path,
                        )
                    )
        return errors

    def _edge_errors(self, graph: Graph) -> list[ValidationError]:
        errors = []
        for edge in graph.edges:
            source = graph.get_node(edge.source)
            target = graph.get_node(edge.target)
            if source is None or target is None:
                continue
            source_port = source.get_port(edge.source_port)
            target_port = target.get_port(edge.target_port)

            description = None
            if not edge.types:
                description = EDGE_TYPES_EMPTY
            elif (
                source_port is None
                or target_port is None
                or not types_compatible(edge.types, source_port.types)
                or not types_compatible(edge.types, target_port.types)
            ):
                description = EDGE_TYPES_INCOMPATIBLE

            if description is not None:
                errors.append(
                    ValidationError(
                        kind=ValidationErrorKind.TYPE_MISMATCH,
                        description=description,
                        node_name=target.name,
                        property_path=("inputs", source.name),
                        edge_id=edge.id,
                    )
                )
        return errors

    # ------------------------------------------------------------------
    # Server errors
    # ------------------------------------------------------------------

    def _merge_server_errors(
        self, candidate: Candidate, external_errors: Optional[Iterable[ServerError]]
    ) -> list[ValidationError]:
        fingerprint = _fingerprint(candidate)
        if external_errors is not None:
            self._server_errors = [
                error.to_validation_error() for error in external_errors
            ]
            self._server_fingerprint = fingerprint if self._server_errors else None
        elif self._server_errors and fingerprint != self._server_fingerprint:
            logger.debug("Candidate changed since the rejected save, clearing server errors")
            self._server_errors = []
            self._server_fingerprint = None
        return list(self._server_errors)


def _duplicate_name_errors(nodes: Iterable[Any]) -> list[ValidationError]:
    errors = []
    names: set[str] = set()
    for node in nodes:
        if node.name in names:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.NAME_ALREADY_IN_USE,
                    description=NODE_NAME_DUPLICATED,
                    node_name=node.name,
                    property_path=("name",),
                )
            )
        names.add(node.name)
    return errors


def _reference_errors(topology: TopologyDocument) -> list[ValidationError]:
    errors = _duplicate_name_errors(topology.nodes)
    names = {node.name for node in topology.nodes}
    for node in topology.nodes:
        for node_input in node.inputs:
            if node_input.node_name not in names:
                errors.append(
                    ValidationError(
                        kind=ValidationErrorKind.MISSING_FIELD,
                        description=INPUT_NODE_MISSING,
                        node_name=node.name,
                        property_path=("inputs", node_input.node_name),
                    )
                )
    return errors


def _is_missing(node: Any, path: tuple[str, ...], display_name_property: str) -> bool:
    """
    True if a required property is absent or empty.

    The display name property is the node name itself. Nested paths below an
    absent optional object are not reported; a required parent reports its
    own absence.
    """
    if path == (display_name_property,):
        return not node.name

    value: Any = node.properties
    for depth, key in enumerate(path):
        if isinstance(value, ParameterReference):
            return False
        if not isinstance(value, dict) or key not in value or value[key] is None:
            # Only the last segment is reported missing; an absent parent is
            # either optional or reported on its own path.
            return depth == len(path) - 1
        value = value[key]
    return value == "" or value == {} or value == []


def _fingerprint(candidate: Candidate) -> Optional[str]:
    try:
        topology = candidate.to_topology() if isinstance(candidate, Graph) else candidate
        return json.dumps(topology.to_dict(), sort_keys=True, default=str)
    except ValueError:
        return None
