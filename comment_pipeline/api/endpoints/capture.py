"""
Edge capture endpoint.

The reserved path answers ``204 No Content`` once the submission is on the bus
and ``500`` with a generic body when it is not. Nothing about downstream
processing is ever reported to the caller.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from comment_pipeline.bus.message_bus import get_message_bus
from comment_pipeline.core.edge_capture import EdgeCapture
from comment_pipeline.core.errors import CaptureError

router = APIRouter()
logger = logging.getLogger(__name__)

GENERIC_ERROR_BODY = {"error": "Internal server error"}


async def get_edge_capture() -> EdgeCapture:
    """Get edge capture instance bound to the application bus."""
    return EdgeCapture(bus=get_message_bus())


@router.get(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Capture a submission",
    responses={500: {"description": "The submission could not be accepted for processing"}},
)
async def capture_submission(
    request: Request,
    edge_capture: EdgeCapture = Depends(get_edge_capture),
) -> Response:
    """
    Accept the request's query parameters for asynchronous processing.

    The request body is never read.
    """
    try:
        await edge_capture.capture(
            query_params=request.query_params,
            raw_query=request.url.query,
        )
    except CaptureError as e:
        logger.error(f"Edge capture failed: {e}", exc_info=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=GENERIC_ERROR_BODY)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
