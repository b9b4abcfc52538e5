"""API routers for the splitpay backend."""
from fastapi import APIRouter

from . import checkout, health, oauth, payments, producers, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(checkout.router)
    api_router.include_router(oauth.router)
    api_router.include_router(webhooks.router)
    api_router.include_router(payments.router)
    api_router.include_router(producers.router)
    return api_router
