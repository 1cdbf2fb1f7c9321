import logging
from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse

import api.api_schemas as schemas
from schema_registry import get_schema_registry

router = APIRouter()
logger = logging.getLogger("api.routes.definitions")


@router.get(
    "",
    operation_id="get_node_definitions",
    response_model=List[schemas.NodeDefinition],
)
def get_node_definitions():
    """
    List every node type known to the schema registry.

    Returns:
        200 OK:
            JSON array of NodeDefinition objects in definition file order.
    """
    return [
        schemas.NodeDefinition.model_validate(definition.to_dict())
        for definition in get_schema_registry().definitions()
    ]


@router.get(
    "/{type_name}",
    operation_id="get_node_definition",
    responses={
        200: {"description": "Node definition", "model": schemas.NodeDefinition},
        404: {"description": "Unknown node type", "model": schemas.MessageResponse},
        500: {"description": "Unexpected error", "model": schemas.MessageResponse},
    },
)
def get_node_definition(type_name: str):
    """
    Get the definition of a single node type.

    Path parameters:
        type_name: Node type tag. Tags starting with ``#`` must be URL
            encoded (``%23Microsoft.Media.MediaGraphRtspSource``).

    Returns:
        200 OK:
            NodeDefinition of the type.
        404 Not Found:
            MessageResponse if the type is unknown. Unknown types remain
            usable on the canvas with a minimal definition.
    """
    try:
        definition = get_schema_registry().get_node_definition(type_name)
        if definition is None:
            logger.warning("Node type %s not found", type_name)
            return JSONResponse(
                content=schemas.MessageResponse(
                    message=f"Node type '{type_name}' not found."
                ).model_dump(),
                status_code=404,
            )
        return schemas.NodeDefinition.model_validate(definition.to_dict())
    except Exception as e:
        logger.error(
            "Unexpected error while retrieving node type %s", type_name, exc_info=True
        )
        return JSONResponse(
            content=schemas.MessageResponse(
                message=f"Unexpected error: {str(e)}"
            ).model_dump(),
            status_code=500,
        )
