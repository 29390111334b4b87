import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docvault.api.routes import resources, sharing, trash
from docvault.core.config import get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="docvault Access & Hierarchy API",
    description="Department, folder and document hierarchy with ACL-based access control.",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(resources.router)
app.include_router(sharing.router)
app.include_router(trash.router)

@app.get("/")
async def root():
    return {"message": "docvault API is running!"}
