"""API routes."""

import logging
from fastapi import APIRouter

from app.api.routes import availability, commissions, reservations, sales, stock

logger = logging.getLogger(__name__)

api_router = APIRouter()

api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
api_router.include_router(availability.router, prefix="/availability", tags=["availability"])
api_router.include_router(reservations.router, prefix="/reservations", tags=["reservations"])
api_router.include_router(sales.router, prefix="/sales", tags=["sales"])
api_router.include_router(commissions.router, prefix="/commissions", tags=["commissions"])
