"""
FastAPI application for BeAligned reflections.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import ReflectionConfig, configure_logging
from .routes import router

configure_logging(ReflectionConfig.from_env())

app = FastAPI(
    title="BeAligned Reflection",
    description="Guided seven-phase co-parenting reflection backed by Supabase",
    version="0.1.0",
)

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(router)


@app.get("/")
async def root():
    return {"message": "BeAligned Reflection API", "docs": "/docs"}
