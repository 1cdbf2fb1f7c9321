import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

import api.api_schemas as schemas
from schema_registry import get_schema_registry
from topology import TopologyDocument
from validation import ServerError, ValidationEngine

router = APIRouter()
logger = logging.getLogger("api.routes.validation")


@router.post(
    "",
    operation_id="validate_topology",
    responses={
        200: {"description": "Validation result", "model": schemas.ValidationResponse},
        400: {"description": "Malformed topology", "model": schemas.MessageResponse},
        500: {"description": "Unexpected error", "model": schemas.MessageResponse},
    },
)
def validate_topology(body: schemas.ValidationRequest):
    """
    Run the validation battery over a candidate topology.

    Operation:
        Check, in order, the topology name, its availability (only when the
        caller supplies ``name_available``), required node properties,
        parameter references and edge type compatibility, then merge the
        supplied server errors. Every applicable error is returned, not
        just the first one.

    Returns:
        200 OK:
            ValidationResponse; ``valid`` is True only when ``errors`` is
            empty. Duplicate node names and dangling inputs are reported as
            errors, not rejected.
        400 Bad Request:
            MessageResponse if the document cannot be parsed at all.
        500 Internal Server Error:
            MessageResponse for unexpected errors.

    Request example:
        .. code-block:: json

            {
              "topology": {"name": "", "properties": {}},
              "name_available": null,
              "server_errors": []
            }

    Successful response example (200):
        .. code-block:: json

            {
              "valid": false,
              "errors": [
                {
                  "kind": "missing-field",
                  "description": "sidebarGraphTopologyNameMissing",
                  "node_name": null,
                  "property": ["name"],
                  "edge_id": null
                }
              ]
            }
    """
    try:
        topology = TopologyDocument.from_dict(
            body.topology.model_dump(), check_references=False
        )
        engine = ValidationEngine(get_schema_registry())
        if body.name_available is not None and topology.name:
            engine.names.remember(topology.name, body.name_available)

        server_errors = [
            ServerError.from_dict(error.model_dump()) for error in body.server_errors
        ]
        errors = engine.validate_local(
            topology, external_errors=server_errors or None
        )
        return schemas.ValidationResponse(
            valid=not errors,
            errors=[
                schemas.ValidationErrorItem.model_validate(error.to_dict())
                for error in errors
            ],
        )
    except ValueError as e:
        logger.error("Malformed topology received for validation: %s", e)
        return JSONResponse(
            content=schemas.MessageResponse(
                message=f"Invalid topology: {str(e)}"
            ).model_dump(),
            status_code=400,
        )
    except Exception as e:
        logger.error("Unexpected error while validating topology", exc_info=True)
        return JSONResponse(
            content=schemas.MessageResponse(
                message=f"Unexpected error: {str(e)}"
            ).model_dump(),
            status_code=500,
        )
