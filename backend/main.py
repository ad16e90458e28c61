from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from api.auth import router as auth_router
from api.admin import router as admin_router
from api.children import router as children_router
from api.vaccinations import router as vaccinations_router
from database.connection import engine, Base
from services.errors import PartialWriteFailure, PendingApproval, PortalError
import config
import logging
import uvicorn

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Child Vaccination Portal API",
    description="Vaccination schedules, completion requests and doctor review",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Domain error kind -> HTTP status
STATUS_BY_KIND = {
    "validation_error": 400,
    "unauthenticated": 401,
    "access_denied": 403,
    "not_found": 404,
    "invalid_state": 409,
    "partial_write_failure": 500,
}


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if isinstance(exc, PendingApproval):
        status_code = 403
    if isinstance(exc, PartialWriteFailure):
        logger.error("Partial write on %s %s: %s", request.method, request.url.path, exc.details)

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.to_dict()}
    )


# Include routers
app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(children_router)
app.include_router(vaccinations_router)

@app.get("/")
async def root():
    return {
        "message": "Child Vaccination Portal API",
        "status": "running",
        "version": "1.0.0",
        "endpoints": {
            "auth": "/api/auth",
            "admin": "/api/admin",
            "children": "/api/children",
            "vaccinations": "/api/vaccinations",
            "docs": "/docs"
        }
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
