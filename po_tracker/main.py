import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from po_tracker.config import settings
from po_tracker.routers import materials, packing_lists, payment_history, payment_requests, purchase_orders
from po_tracker.services.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (AuthorizationError, 403),
)

app = FastAPI(title='Purchase Order Tracker')

app.include_router(purchase_orders.router)
app.include_router(packing_lists.router)
app.include_router(payment_requests.router)
app.include_router(payment_history.router)
app.include_router(materials.router)


def _failure(status_code: int, error: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'error': error})


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return _failure(status_code, str(exc))
    return _failure(400, str(exc))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _failure(exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {'field': '.'.join(str(part) for part in error['loc'][1:]), 'message': error['msg']}
        for error in exc.errors()
    ]
    return _failure(400, errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return _failure(500, 'Internal server error')


@app.get('/health')
def health() -> dict:
    return {'success': True}
