"""Media processing endpoints.

One route per entry in the operation catalogue; every route hands its
validated body to the shared dispatcher.
"""

from fastapi import APIRouter
from fastapi.responses import Response

from ffmpeg_api.api.deps import Context, DispatcherDep
from ffmpeg_api.services.operations import OPERATIONS, Operation

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"description": "Missing or invalid input"},
    500: {"description": "Download or FFmpeg failure"},
    501: {"description": "Operation not implemented"},
    503: {"description": "All processing slots busy"},
    504: {"description": "Processing timeout"},
}


def _make_endpoint(operation: Operation):
    async def endpoint(
        body: operation.request_model,  # type: ignore[name-defined]
        dispatcher: DispatcherDep,
        context: Context,
    ) -> Response:
        return await dispatcher.execute(
            operation,
            body,
            verbose=context.verbose,
            request_id=context.request_id,
        )

    endpoint.__name__ = operation.name.replace("-", "_")
    endpoint.__doc__ = operation.summary
    return endpoint


for _operation in OPERATIONS:
    router.add_api_route(
        _operation.path,
        _make_endpoint(_operation),
        methods=["POST"],
        name=_operation.name,
        summary=_operation.summary,
        response_class=Response,
        responses=_ERROR_RESPONSES,
    )
