from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.admin import router as admin_router
from .api.drivers import router as drivers_router
from .api.positions import router as positions_router
from .api.webhooks import router as webhooks_router
from .db import init_db
from .errors import DomainError

# Create FastAPI app
app = FastAPI(
    title="DriveAds Campaign Fulfillment",
    description="Assignment lifecycle, GPS telemetry ingestion and anti-fraud for vehicle ad campaigns",
    version="1.0.0"
)

# Include API routes
app.include_router(positions_router)
app.include_router(drivers_router)
app.include_router(admin_router)
app.include_router(webhooks_router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.on_event("startup")
async def startup():
    """Initialize database on startup."""
    init_db()


@app.get("/")
async def root():
    return {"message": "DriveAds Campaign Fulfillment", "docs": "/docs"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
