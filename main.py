"""
Entry point for the ZapFlow service
"""
import uvicorn
from zapflow.core.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "zapflow.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
