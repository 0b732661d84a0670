"""FastAPI application setup for Shuttle Pass."""

from fastapi import FastAPI

from .api import router as api_router

app = FastAPI(title="Shuttle Pass")


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


# API routes
app.include_router(api_router, prefix="/v1")
