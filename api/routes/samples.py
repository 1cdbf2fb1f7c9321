import logging
from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse

import api.api_schemas as schemas
from managers.sample_manager import get_sample_manager

router = APIRouter()
logger = logging.getLogger("api.routes.samples")


@router.get("", operation_id="get_samples", response_model=List[schemas.SampleSummary])
def get_samples():
    """
    List the sample topologies offered by the sample selector.

    Returns:
        200 OK:
            JSON array of ``{"name", "description"}`` objects sorted by name.
    """
    return [
        schemas.SampleSummary(name=sample.name, description=sample.description)
        for sample in sorted(get_sample_manager().get_samples(), key=lambda s: s.name)
    ]


@router.get(
    "/{name}",
    operation_id="get_sample",
    responses={
        200: {"description": "Sample topology", "model": schemas.Topology},
        404: {"description": "Sample not found", "model": schemas.MessageResponse},
        500: {"description": "Unexpected error", "model": schemas.MessageResponse},
    },
)
def get_sample(name: str):
    """
    Get a sample topology by name.

    Path parameters:
        name: Sample topology name (for example ``"motion-detection"``).

    Returns:
        200 OK:
            Topology document of the sample.
        404 Not Found:
            MessageResponse if no sample has this name.
        500 Internal Server Error:
            MessageResponse for unexpected errors in the manager layer.

    Error response example (404):
        .. code-block:: json

            {
              "message": "Sample with name 'unknown' not found."
            }
    """
    try:
        sample = get_sample_manager().get_sample(name)
        return schemas.Topology.model_validate(sample.to_dict())
    except ValueError as e:
        logger.warning("Sample %s not found: %s", name, e)
        return JSONResponse(
            content=schemas.MessageResponse(message=str(e)).model_dump(),
            status_code=404,
        )
    except Exception as e:
        logger.error("Unexpected error while retrieving sample %s", name, exc_info=True)
        return JSONResponse(
            content=schemas.MessageResponse(
                message=f"Unexpected error: {str(e)}"
            ).model_dump(),
            status_code=500,
        )
