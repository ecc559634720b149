"""FastAPI application - serves the analysis and comparison API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trackdiff.api.compare import router as compare_router
from trackdiff.api.upload import router as upload_router
from trackdiff.config import settings

app = FastAPI(title="Trackdiff", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(upload_router, prefix="/api")
app.include_router(compare_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run():
    import uvicorn
    uvicorn.run(
        "trackdiff.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
