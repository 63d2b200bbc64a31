"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from boxoffice.api.routes import coupons, events, orders, payments, tickets, transfers

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(events.ticket_types_router)
api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(tickets.router)
api_router.include_router(transfers.router)
api_router.include_router(coupons.router)
