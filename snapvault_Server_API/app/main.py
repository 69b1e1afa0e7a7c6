# main.py
# Description: FastAPI application for the snapvault photo sync server.
#
# Imports
import logging
#
# 3rd-party Libraries
import sys
from contextlib import asynccontextmanager
from loguru import logger
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
#
# Local Imports
from snapvault_Server_API.app.core.config import settings
from snapvault_Server_API.app.api.v1.API_Deps.Sync_Deps import reset_remote_photo_store
#
# Sync Endpoint
from snapvault_Server_API.app.api.v1.endpoints.sync import router as sync_router
#
########################################################################################################################
#
# Functions:


# --- Loguru Configuration with Intercept Handler ---

class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


logger.remove()
logger.add(
    sys.stderr,
    level=settings["LOG_LEVEL"],
    format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True,
)

# uvicorn plus the library loggers of the core packages
loggers_to_intercept = ["uvicorn", "uvicorn.error", "uvicorn.access", "snapvault_Server_API"]
for logger_name in loggers_to_intercept:
    mod_logger = logging.getLogger(logger_name)
    mod_logger.handlers = [InterceptHandler()]
    mod_logger.propagate = False
logging.getLogger("snapvault_Server_API").setLevel(settings["LOG_LEVEL"])

logger.info("Loguru logger configured with standard logging interception.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("App Shutdown: Closing metadata DB connections")
    reset_remote_photo_store()


app = FastAPI(
    title="snapvault API",
    version="0.1.0",
    description="Metadata and signed-URL service for offline-first photo sync",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings["ALLOWED_ORIGINS"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    logger.warning(f"Invalid request to {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": errors},
    )


@app.get("/")
async def root():
    return {"message": "snapvault API is running."}


app.include_router(sync_router, prefix="/api", tags=["sync"])

#
## End of main.py
########################################################################################################################
