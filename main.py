import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import Settings, get_settings
from db_setup import init_db
from db_models import IdentifyRequest, FinalResponse, ContactResponse, ErrorResponse
from errors import StorageError, ValidationError
from resolver import Resolver

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(settings.database_path)
        yield

    app = FastAPI(
        title=settings.app_title,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.resolver = Resolver(settings)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # malformed bodies carry no usable identifier either
        logger.info("Rejected %s body: %s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"error": ValidationError().message})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Identify error on %s", request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        # Starlette re-raises after responding, so the server logs the traceback
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    @app.get("/")
    async def root():
        return {"message": "Identity reconciliation API is up"}

    @app.post(
        "/identify",
        response_model=FinalResponse,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    def identify(body: IdentifyRequest, request: Request):
        # sync route: the store transaction blocks, so it runs in the threadpool
        identity = request.app.state.resolver.resolve(body.email, body.phoneNumber)

        return FinalResponse(
            contact=ContactResponse(
                primaryContactId=identity.primary_contact_id,
                emails=identity.emails,
                phoneNumbers=identity.phone_numbers,
                secondaryContactIds=identity.secondary_contact_ids,
            )
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
