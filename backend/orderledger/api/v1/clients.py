"""
Client API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from orderledger.core.database import get_db
from orderledger.core.security import get_current_active_user, PermissionChecker
from orderledger.schemas import ClientCreate, ClientResponse
from orderledger.services.client_service import ClientService

router = APIRouter(prefix="/clients", tags=["Clients"])


@router.get("", response_model=List[ClientResponse], dependencies=[Depends(PermissionChecker(["clients:read"]))])
async def list_clients(
    client_type: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db)
):
    return ClientService(db).get_all(client_type=client_type, status=status)


@router.get("/{client_id}", response_model=ClientResponse, dependencies=[Depends(PermissionChecker(["clients:read"]))])
async def get_client(client_id: int, db: Session = Depends(get_db)):
    return ClientService(db).get_or_404(client_id)


@router.post("", response_model=ClientResponse, dependencies=[Depends(PermissionChecker(["clients:write"]))])
async def create_client(
    client_data: ClientCreate,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_active_user)
):
    client = ClientService(db).create(
        name=client_data.name,
        client_type=client_data.type,
        email=client_data.email,
        phone=client_data.phone,
        country=client_data.country,
        city=client_data.city
    )
    db.commit()
    return client
