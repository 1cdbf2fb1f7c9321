import logging

from graph import Graph
from schema_registry import get_schema_registry
from topology import TopologyDocument

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.api_schemas import (
    Canvas,
    MessageResponse,
    ToCanvasRequest,
    Topology,
)

router = APIRouter()
logger = logging.getLogger("api.routes.convert")


@router.post(
    "/to-canvas",
    operation_id="to_canvas",
    summary="Convert a topology document to a canvas model",
    responses={
        200: {"description": "Conversion successful", "model": Canvas},
        400: {"description": "Invalid topology", "model": MessageResponse},
        500: {"description": "Internal server error", "model": MessageResponse},
    },
)
def to_canvas(request: ToCanvasRequest):
    """
    Convert a topology document into the editable canvas model.

    Every node descriptor becomes a canvas node with ports derived from its
    node definition, every input becomes an edge and nodes are placed by
    the default auto-layout in the requested orientation.

    Args:
        request: ToCanvasRequest with the ``topology`` and the
            ``horizontal`` layout flag.

    Returns:
        Canvas: On success (HTTP 200) the canvas model.
        MessageResponse: On client or server error (HTTP 400 or 500) a message
            describing the failure.

    Failure cases:
        * 400 – malformed topology, duplicate node names or an input that
          references an unknown node.
        * 500 – unexpected internal error while converting the topology.

    Request example:
        .. code-block:: json

            {
              "topology": {
                "name": "recording",
                "properties": {
                  "sources": [
                    {"@type": "#Microsoft.Media.MediaGraphRtspSource", "name": "rtspSource"}
                  ],
                  "sinks": [
                    {
                      "@type": "#Microsoft.Media.MediaGraphFileSink",
                      "name": "fileSink",
                      "inputs": [{"nodeName": "rtspSource"}]
                    }
                  ]
                }
              },
              "horizontal": true
            }

    Error response example (400):
        .. code-block:: json

            {
              "message": "Invalid topology: Node 'fileSink' references unknown input node 'camera'."
            }
    """
    try:
        topology = TopologyDocument.from_dict(request.topology.model_dump())
        graph = Graph.from_topology(
            topology, get_schema_registry(), horizontal=request.horizontal
        )
        return Canvas.model_validate(graph.to_dict())
    except ValueError as e:
        logger.error("Invalid topology received: %s", e)
        return JSONResponse(
            content=MessageResponse(message=f"Invalid topology: {str(e)}").model_dump(),
            status_code=400,
        )
    except Exception as e:
        logger.error("Failed to convert topology to canvas", exc_info=True)
        return JSONResponse(
            content=MessageResponse(message=str(e)).model_dump(),
            status_code=500,
        )


@router.post(
    "/to-topology",
    operation_id="to_topology",
    summary="Convert a canvas model to a topology document",
    responses={
        200: {"description": "Conversion successful", "model": Topology},
        400: {"description": "Invalid canvas", "model": MessageResponse},
        500: {"description": "Internal server error", "model": MessageResponse},
    },
)
def to_topology(request: Canvas):
    """
    Convert an edited canvas model back into a topology document.

    Each canvas node becomes a node descriptor in the collection matching
    its kind and each edge becomes an input on its target node. Property
    values, parameter references included, are copied verbatim; positions
    and the view transform are dropped.

    Args:
        request: Canvas body.

    Returns:
        Topology: On success (HTTP 200) the topology document.
        MessageResponse: On client or server error (HTTP 400 or 500) a message
            describing the failure.

    Failure cases:
        * 400 – duplicate node names or an edge referencing a node that is
          not on the canvas.
        * 500 – unexpected internal error while converting the canvas.
    """
    try:
        graph = Graph.from_dict(request.model_dump())
        return Topology.model_validate(graph.to_topology().to_dict())
    except ValueError as e:
        logger.error("Invalid canvas received: %s", e)
        return JSONResponse(
            content=MessageResponse(message=f"Invalid canvas: {str(e)}").model_dump(),
            status_code=400,
        )
    except Exception as e:
        logger.error("Failed to convert canvas to topology", exc_info=True)
        return JSONResponse(
            content=MessageResponse(message=str(e)).model_dump(),
            status_code=500,
        )
