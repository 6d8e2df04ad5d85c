"""
Client Service - Read access to the client directory
"""
from typing import Optional, List
from sqlalchemy.orm import Session

from orderledger.core.config import settings
from orderledger.core.exceptions import NotFound
from orderledger.models import Client, ClientType


class ClientService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, client_id: int) -> Optional[Client]:
        return self.db.query(Client).filter(Client.id == client_id).first()

    def get_or_404(self, client_id: int) -> Client:
        client = self.get_by_id(client_id)
        if not client:
            raise NotFound("Client", client_id)
        return client

    def get_all(self, client_type: Optional[str] = None, status: Optional[str] = None) -> List[Client]:
        query = self.db.query(Client)
        if client_type:
            query = query.filter(Client.type == client_type)
        if status:
            query = query.filter(Client.status == status)
        return query.order_by(Client.name).all()

    def create(self, name: str, client_type: str, email: Optional[str] = None,
               phone: Optional[str] = None, country: Optional[str] = None,
               city: Optional[str] = None) -> Client:
        client = Client(
            name=name,
            type=client_type,
            email=email,
            phone=phone,
            country=country,
            city=city
        )
        self.db.add(client)
        self.db.flush()
        return client


def is_local(client: Client) -> bool:
    return client.type == ClientType.LOCAL.value


def settlement_currency(client: Client) -> str:
    """Currency a client's advance payments are taken in"""
    return settings.LOCAL_CURRENCY if is_local(client) else settings.BASE_CURRENCY
