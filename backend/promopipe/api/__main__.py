"""API server entry point for python -m promopipe.api"""
import uvicorn
from promopipe.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "promopipe.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
