from typing import Any, Dict, List, Optional

from enum import Enum
from pydantic import BaseModel, Field


class NodeKind(str, Enum):
    SOURCE = "source"
    PROCESSOR = "processor"
    SINK = "sink"


class NodeState(str, Enum):
    DEFAULT = "default"
    SELECTED = "selected"
    HIGHLIGHTED = "highlighted"


class ValidationErrorKind(str, Enum):
    """
    Category of a validation error.

    Values:
        MISSING_FIELD: A required name, property or parameter value is empty.
        NAME_ALREADY_IN_USE: The topology (or node) name is taken.
        TYPE_MISMATCH: An edge carries types one of its ports does not accept.
        SERVER_ERROR: Error reported by the management plane on save.
    """

    MISSING_FIELD = "missing-field"
    NAME_ALREADY_IN_USE = "name-already-in-use"
    TYPE_MISMATCH = "type-mismatch"
    SERVER_ERROR = "server-error"


class MessageResponse(BaseModel):
    """
    Generic message payload used as a simple response body.

    This model is used mainly for non-2xx responses to provide a plain
    English description of what happened.

    Attributes:
        message: Description of the error or status.

    Example:
        .. code-block:: json

            {
              "message": "Node type '#Custom.Unknown' not found."
            }
    """

    message: str


class Topology(BaseModel):
    """
    Topology document in its wire format.

    Attributes:
        name: Topology name, unique within the management plane.
        properties: ``description``, ``parameters`` and the ``sources``,
            ``processors`` and ``sinks`` node collections.
    """

    name: str = ""
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        examples=[
            {
                "description": "Continuous recording",
                "parameters": [{"name": "rtspUrl", "type": "String"}],
                "sources": [
                    {
                        "@type": "#Microsoft.Media.MediaGraphRtspSource",
                        "name": "rtspSource",
                        "endpoint": {"url": "${rtspUrl}"},
                    }
                ],
                "sinks": [
                    {
                        "@type": "#Microsoft.Media.MediaGraphFileSink",
                        "name": "fileSink",
                        "inputs": [{"nodeName": "rtspSource"}],
                    }
                ],
            }
        ],
    )


class CanvasPosition(BaseModel):
    x: float = 0.0
    y: float = 0.0


class CanvasPort(BaseModel):
    id: str
    types: List[str]
    is_input: bool


class CanvasNode(BaseModel):
    """
    Node of the canvas model.

    Attributes:
        id: Canvas-local identifier.
        name: Node name as used in the topology.
        type: Node type tag.
        kind: Topology collection the node belongs to.
        properties: Property bag; parameter references are ``${name}`` strings.
        position: Canvas position.
        ports: Typed connection points derived from the node definition.
        state: Selection state.
    """

    id: str
    name: str
    type: str
    kind: NodeKind
    properties: Dict[str, Any] = Field(default_factory=dict)
    position: CanvasPosition = Field(default_factory=CanvasPosition)
    ports: List[CanvasPort] = Field(default_factory=list)
    state: NodeState = NodeState.DEFAULT


class OutputSelector(BaseModel):
    property: str
    operator: str
    value: str


class CanvasEdge(BaseModel):
    """
    Directed connection between two canvas nodes.

    Attributes:
        types: Data types allowed over the connection.
        inherit_types: True when the types follow from the ports rather
            than from explicit media type selectors.
        other_selectors: Output selectors not selecting a media type.
    """

    id: str
    source: str
    source_port: str
    target: str
    target_port: str
    types: List[str] = Field(default_factory=list)
    inherit_types: bool = True
    other_selectors: List[OutputSelector] = Field(default_factory=list)


class CanvasParameter(BaseModel):
    name: str
    type: str = "String"
    description: Optional[str] = None
    default: Optional[str] = None


class ZoomPanSettings(BaseModel):
    transform_matrix: List[float] = Field(
        default_factory=lambda: [1.0, 0.0, 0.0, 1.0, 0.0, 0.0]
    )


class Canvas(BaseModel):
    """
    Request or response body containing the editable canvas model.

    Attributes:
        name: Topology name.
        description: Topology description.
        parameters: Parameter declarations.
        nodes: Canvas nodes.
        edges: Canvas edges.
        horizontal: Layout orientation.
        zoom_pan: View transform.
    """

    name: str = ""
    description: Optional[str] = None
    parameters: List[CanvasParameter] = Field(default_factory=list)
    nodes: List[CanvasNode] = Field(default_factory=list)
    edges: List[CanvasEdge] = Field(default_factory=list)
    horizontal: bool = True
    zoom_pan: ZoomPanSettings = Field(default_factory=ZoomPanSettings)


class ToCanvasRequest(BaseModel):
    topology: Topology
    horizontal: bool = Field(
        default=True, description="Lay out ranks left to right (True) or top to bottom."
    )


class ServerError(BaseModel):
    """Error reported by the management plane for a rejected save."""

    value: str
    nodeName: Optional[str] = None
    nodeProperty: Optional[str] = None


class ValidationRequest(BaseModel):
    """
    Request body of the validation endpoint.

    Attributes:
        topology: Candidate topology.
        name_available: Outcome of a name availability check already
            performed by the caller, None when no check was made.
        server_errors: Errors from a rejected save to merge into the result.
    """

    topology: Topology
    name_available: Optional[bool] = None
    server_errors: List[ServerError] = Field(default_factory=list)


class ValidationErrorItem(BaseModel):
    kind: ValidationErrorKind
    description: str
    node_name: Optional[str] = None
    property: List[str] = Field(default_factory=list)
    edge_id: Optional[str] = None


class ValidationResponse(BaseModel):
    """
    Result of a validation pass.

    Attributes:
        valid: True when no error was found.
        errors: Errors in check order.
    """

    valid: bool
    errors: List[ValidationErrorItem] = Field(default_factory=list)


class PropertyDefinition(BaseModel):
    name: str
    type: str = "string"
    required: bool = False
    allowed_values: List[str] = Field(default_factory=list)
    properties: List["PropertyDefinition"] = Field(default_factory=list)


class PortDefinition(BaseModel):
    name: str
    types: List[str]
    is_input: bool


class NodeDefinition(BaseModel):
    """
    Declarative definition of a node type.

    Attributes:
        type_name: Type tag the definition applies to.
        kind: Collection new nodes of this type are added to.
        description: Short human-readable description.
        display_name_property: Property shown as the node title.
        properties: Editable properties.
        ports: Input ports followed by the output port, if any.
    """

    type_name: str
    kind: Optional[NodeKind] = None
    description: str = ""
    display_name_property: str = "name"
    properties: List[PropertyDefinition] = Field(default_factory=list)
    ports: List[PortDefinition] = Field(default_factory=list)


class SampleSummary(BaseModel):
    name: str
    description: Optional[str] = None
