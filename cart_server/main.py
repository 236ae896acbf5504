"""
Cart Server Application

Reference implementation of the cart backend contract: per-user
in-memory carts priced against a product catalog.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .routes import products_router, cart_router

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("CART_SERVER_DEBUG", "false").lower() == "true" else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Cart Server starting up...")
    yield
    logger.info("Cart Server shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Cart Server",
    description="Reference cart backend for the cart engine",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CART_SERVER_CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(products_router)
app.include_router(cart_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "cart-server"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cart_server.main:app",
        host=os.getenv("CART_SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("CART_SERVER_PORT", "8001")),
        reload=True,
    )
