"""Health check endpoints."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check if the API is running."""
    return {"status": "healthy", "message": "HealthVault API is running"}


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "HealthVault API",
        "version": "1.0.0",
        "description": "Authentication and session lifecycle for HealthVault",
    }
