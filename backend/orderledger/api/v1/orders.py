"""
Orders API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from orderledger.core.database import get_db
from orderledger.core.security import get_current_active_user, PermissionChecker
from orderledger.schemas import (
    OrderCreate, OrderResponse, OrderWithItems, OrderItemsUpdate, OrderStatusUpdate,
    InvoiceNumberUpdate, OrderDetailsUpdate, DocumentAttach, DeliveryCreate,
    DeliveryResponse, PaymentResponse, MessageResponse
)
from orderledger.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=List[OrderResponse], dependencies=[Depends(PermissionChecker(["orders:read"]))])
async def list_orders(
    client_id: Optional[int] = None,
    status: Optional[str] = None,
    client_type: Optional[str] = None,
    fiscal_year: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db)
):
    """List orders, newest fiscal year first"""
    return OrderService(db).list(
        client_id=client_id,
        status=status,
        client_type=client_type,
        fiscal_year=fiscal_year,
        start_date=start_date,
        end_date=end_date
    )


@router.get("/stats", dependencies=[Depends(PermissionChecker(["orders:read"]))])
async def order_stats(
    client_type: Optional[str] = None,
    fiscal_year: Optional[int] = None,
    db: Session = Depends(get_db)
):
    return OrderService(db).get_stats(client_type=client_type, fiscal_year=fiscal_year)


@router.get("/{order_id}", dependencies=[Depends(PermissionChecker(["orders:read"]))])
async def get_order(order_id: int, db: Session = Depends(get_db)):
    """Order with items, invoice, delivery and payments"""
    details = OrderService(db).get_with_details(order_id)
    return {
        "order": OrderWithItems.model_validate(details["order"]),
        "payments": [PaymentResponse.model_validate(p) for p in details["payments"]],
    }


@router.post("", response_model=OrderWithItems, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def create_order(
    order_data: OrderCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Create an order and its invoice"""
    order = OrderService(db, user_id=current_user.id).create(order_data)
    db.commit()
    return order


@router.put("/{order_id}/status", response_model=OrderWithItems, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def update_order_status(
    order_id: int,
    status_data: OrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    order = OrderService(db, user_id=current_user.id).update_status(
        order_id, status_data.status, status_data.delivery_date
    )
    db.commit()
    return order


@router.put("/{order_id}/items", response_model=OrderWithItems, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def update_order_items(
    order_id: int,
    items_data: OrderItemsUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    order = OrderService(db, user_id=current_user.id).update_items(order_id, items_data)
    db.commit()
    return order


@router.put("/{order_id}/invoice-number", response_model=OrderWithItems, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def update_invoice_number(
    order_id: int,
    number_data: InvoiceNumberUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    order = OrderService(db, user_id=current_user.id).update_invoice_number(order_id, number_data.invoice_number)
    db.commit()
    return order


@router.patch("/{order_id}", response_model=OrderResponse, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def update_order_details(
    order_id: int,
    details: OrderDetailsUpdate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    order = OrderService(db, user_id=current_user.id).update_details(order_id, details)
    db.commit()
    return order


@router.post("/{order_id}/documents", response_model=OrderResponse, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def attach_document(
    order_id: int,
    document: DocumentAttach,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    order = OrderService(db, user_id=current_user.id).attach_document(order_id, document.kind, document.storage_id)
    db.commit()
    return order


@router.delete("/{order_id}/documents/{kind}", response_model=OrderResponse, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def remove_document(
    order_id: int,
    kind: str,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    order = OrderService(db, user_id=current_user.id).remove_document(order_id, kind)
    db.commit()
    return order


@router.post("/{order_id}/delivery", response_model=DeliveryResponse, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def create_delivery(
    order_id: int,
    delivery_data: DeliveryCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    delivery = OrderService(db, user_id=current_user.id).create_delivery(order_id, delivery_data)
    db.commit()
    return delivery


@router.delete("/{order_id}", response_model=MessageResponse, dependencies=[Depends(PermissionChecker(["orders:write"]))])
async def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    """Delete a pending order"""
    OrderService(db, user_id=current_user.id).delete(order_id)
    db.commit()
    return MessageResponse(message="Order deleted")
