from fastapi import APIRouter
from flagship import __version__

router = APIRouter(tags=["health"])

@router.get("/healthz")
def health():
    return {"status":"ok"}

@router.get("/api/v1/flags")
def service_info():
    return {"service": "Flagship Feature Flags API", "status": "operational", "version": __version__}
