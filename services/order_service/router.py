import os
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security import Principal, get_current_user, limiter, require_admin

from .admin import OrderAdminService
from .schemas import AdminOrderUpdate, OrderCreate, OrderResponse
from .service import OrderService

ORDER_RATE_LIMIT = os.getenv("ORDER_RATE_LIMIT", "30/minute")

router = APIRouter(prefix="/orders", tags=["orders"])
# Every admin route requires the ADMIN role
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"], dependencies=[Depends(require_admin)])


def get_admin_service(request: Request) -> OrderAdminService:
    return OrderAdminService(request.app.state.dispatcher)


# --- CUSTOMER ---

@router.post("", response_model=OrderResponse, status_code=201)
@limiter.limit(ORDER_RATE_LIMIT)
async def create_order(
    request: Request,  # Required by SlowAPI
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
):
    return await OrderService.create_order(db, principal, data)


@router.get("", response_model=List[OrderResponse])
async def list_my_orders(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
):
    return await OrderService.list_orders_for(db, principal)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
):
    return await OrderService.get_order_for(db, principal, order_id)


# --- ADMIN ---

@admin_router.get("", response_model=List[OrderResponse])
async def list_orders(db: AsyncSession = Depends(get_db)):
    return await OrderService.list_all_orders(db)


@admin_router.get("/{order_id}", response_model=OrderResponse)
async def get_order_admin(order_id: str, db: AsyncSession = Depends(get_db)):
    return await OrderService.get_order(db, order_id)


@admin_router.patch("/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: str,
    data: AdminOrderUpdate,
    db: AsyncSession = Depends(get_db),
    service: OrderAdminService = Depends(get_admin_service),
):
    return await service.update_order(db, order_id, data)
