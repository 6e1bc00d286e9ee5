# mediasync/main.py - only app wiring, no endpoints here.
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# import routers
from mediasync.api.routes import ingest

app = FastAPI(title="mediasync ingest", version="0.1")

# CORS (mobile/web clients post from anywhere)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# public routers (no /api prefix: clients post to /upload)
app.include_router(ingest.public_router)
