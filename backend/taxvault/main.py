import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from taxvault.config import settings
from taxvault.routers.extraction import PUBLIC_PATHS

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="TaxVault API",
    description="Receipt extraction, reconciliation and LHDN tax-relief tracking",
    version="0.1.0"
)


class AppCORSMiddleware(CORSMiddleware):
    """
    CORSMiddleware that leaves public endpoints alone.

    Paths in exempt_paths answer their own preflight with permissive
    headers for any origin; everything else is limited to ALLOWED_ORIGINS.
    """

    def __init__(self, app, exempt_paths=(), **kwargs):
        super().__init__(app, **kwargs)
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"] in self.exempt_paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


# CORS middleware
app.add_middleware(
    AppCORSMiddleware,
    exempt_paths=PUBLIC_PATHS,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "message": "TaxVault API",
        "version": "0.1.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

# Import routers
from taxvault.routers import extraction, receipts, tax_relief

# Include routers
app.include_router(extraction.router)
app.include_router(receipts.router)
app.include_router(tax_relief.router)
