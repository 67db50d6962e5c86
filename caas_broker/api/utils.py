import logging

from starlette.requests import Request
from starlette.responses import JSONResponse

from caas_broker.errors import (
    CaasBrokerException,
    ClusterCallError,
    IntegrityException,
    NotFoundException,
    ParameterValidationException,
    ProvisioningError,
    RenderError,
    TokenExtractionError,
)

ERROR_STATUS = {
    IntegrityException: 409,
    NotFoundException: 404,
    ParameterValidationException: 422,
    RenderError: 422,
    ProvisioningError: 502,
    ClusterCallError: 502,
    TokenExtractionError: 502,
}

logger = logging.getLogger(__name__)


def _exception_handler(request: Request, exc: Exception):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.exception("Broker request failed for path=%s: %s", request.url.path, exc)
    else:
        logger.warning("Request failed path=%s status=%s error=%s", request.url.path, status, exc)
    return JSONResponse({"description": str(exc)}, status_code=status)


def register_exception_handlers(app):
    app.exception_handler(CaasBrokerException)(_exception_handler)
