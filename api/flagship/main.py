import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from flagship import __version__
from flagship.logging_config import configure_logging
from flagship.metrics import setup_metrics
from flagship.routers.flags import router as flags_router
from flagship.routers.health import router as health_router

LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

configure_logging("flagship", LOG_LEVEL)

app = FastAPI(title="Flagship Feature Flags API", version=__version__)

# SDKs call the evaluation endpoint from browsers
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_router, prefix="")
app.include_router(flags_router, prefix="")

# Metrics endpoint
setup_metrics(app)
