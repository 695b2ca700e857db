"""Gateway router: QIDO-RS search, series metadata and WADO-URI image endpoints.

Translates viewer requests into archive C-FIND and C-GET/C-MOVE operations via
the GatewayService, enabling OHIF-style viewers to display images from an
archive that only speaks DIMSE.
"""

from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import FileResponse, JSONResponse

from dicomgate.api.dependencies import GatewayServiceDep
from dicomgate.exceptions.http import BAD_REQUEST

router = APIRouter()

DICOM_JSON_CONTENT_TYPE = "application/dicom+json"
DICOM_CONTENT_TYPE = "application/dicom"


@router.get("/rs/studies")
@router.get("/viewer/rs/studies")
async def search_studies(request: Request, service: GatewayServiceDep) -> JSONResponse:
    """QIDO-RS: Search for studies.

    Args:
        request: FastAPI request (query params forwarded to C-FIND)
        service: Gateway service

    Returns:
        DICOM JSON array of matching studies
    """
    results = await service.search_studies(dict(request.query_params))
    return JSONResponse(content=results, media_type=DICOM_JSON_CONTENT_TYPE)


@router.get("/viewer/rs/studies/{study_uid}/series")
async def search_series(
    study_uid: str, request: Request, service: GatewayServiceDep
) -> JSONResponse:
    """QIDO-RS: Search for series within a study.

    Args:
        study_uid: Study Instance UID
        request: FastAPI request (query params forwarded to C-FIND)
        service: Gateway service

    Returns:
        DICOM JSON array of matching series
    """
    results = await service.search_series(study_uid, dict(request.query_params))
    return JSONResponse(content=results, media_type=DICOM_JSON_CONTENT_TYPE)


@router.get("/viewer/rs/studies/{study_uid}/series/{series_uid}/instances")
async def search_instances(
    study_uid: str, series_uid: str, request: Request, service: GatewayServiceDep
) -> JSONResponse:
    """QIDO-RS: Search for instances within a series."""
    results = await service.search_instances(study_uid, series_uid, dict(request.query_params))
    return JSONResponse(content=results, media_type=DICOM_JSON_CONTENT_TYPE)


@router.get("/viewer/rs/studies/{study_uid}/series/{series_uid}/metadata")
async def retrieve_series_metadata(
    study_uid: str, series_uid: str, request: Request, service: GatewayServiceDep
) -> JSONResponse:
    """Series metadata, with pixel geometry read from a retrieved instance.

    Starts (or joins) the series retrieve if no instance is materialized yet and
    answers once the first one is stored.

    Args:
        study_uid: Study Instance UID
        series_uid: Series Instance UID
        request: FastAPI request (query params forwarded to C-FIND)
        service: Gateway service

    Returns:
        DICOM JSON array of instance metadata
    """
    metadata = await service.retrieve_series_metadata(
        study_uid, series_uid, dict(request.query_params)
    )
    return JSONResponse(content=metadata, media_type=DICOM_JSON_CONTENT_TYPE)


@router.get("/viewer/wadouri")
async def retrieve_instance(
    service: GatewayServiceDep,
    background_tasks: BackgroundTasks,
    study_uid: str = Query(alias="studyUID"),
    series_uid: str = Query(alias="seriesUID"),
    object_uid: str = Query(alias="objectUID"),
    request_type: str | None = Query(default=None, alias="requestType"),
) -> FileResponse:
    """WADO-URI: Return one instance as ``application/dicom``.

    The series is retrieved first if the instance is not materialized. Expired
    studies other than this one are swept after the response is sent.

    Args:
        service: Gateway service
        background_tasks: Runs the post-response sweep
        study_uid: Study Instance UID
        series_uid: Series Instance UID
        object_uid: SOP Instance UID
        request_type: Must be ``WADO`` when given

    Returns:
        The DICOM file
    """
    if request_type is not None and request_type != "WADO":
        raise BAD_REQUEST.with_context(f"Unsupported requestType: {request_type}")

    path = await service.retrieve_instance(study_uid, series_uid, object_uid)
    background_tasks.add_task(service.sweep, study_uid)
    return FileResponse(path, media_type=DICOM_CONTENT_TYPE)


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}
