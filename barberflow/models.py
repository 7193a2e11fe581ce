import datetime as dt
from decimal import Decimal
from typing import Optional, List

from sqlmodel import DateTime, SQLModel, Field, Relationship

STATUS_PENDING = 'pending'
STATUS_CONFIRMED = 'confirmed'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED)

# datetimes are stored naive: created_at in UTC, the other stamps in shop-local time
def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)

class Shop(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    evolution_instance_name: Optional[str] = None
    evolution_instance_api_key: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime)

    users: List['User'] = Relationship(back_populates='shop')
    barbers: List['Barber'] = Relationship(back_populates='shop')
    services: List['Service'] = Relationship(back_populates='shop')
    clients: List['Client'] = Relationship(back_populates='shop')

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    shop_id: int = Field(foreign_key='shop.id')
    email: str = Field(index=True)
    password_hash: str
    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime)
    shop: Optional[Shop] = Relationship(back_populates='users')

class Barber(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    shop_id: int = Field(foreign_key='shop.id')
    name: str
    phone: Optional[str] = None
    active: bool = True
    shop: Optional[Shop] = Relationship(back_populates='barbers')
    appointments: List['Appointment'] = Relationship(back_populates='barber')

class Service(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    shop_id: int = Field(foreign_key='shop.id')
    name: str
    duration: int = 30
    price: Decimal = Field(default=Decimal('0.00'), max_digits=10, decimal_places=2)
    shop: Optional[Shop] = Relationship(back_populates='services')
    appointments: List['Appointment'] = Relationship(back_populates='service')

class Client(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    shop_id: int = Field(foreign_key='shop.id')
    name: str
    phone: Optional[str] = Field(default=None, index=True)
    visits: int = 0
    total_spent: Decimal = Field(default=Decimal('0.00'), max_digits=10, decimal_places=2)
    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime)
    shop: Optional[Shop] = Relationship(back_populates='clients')
    appointments: List['Appointment'] = Relationship(back_populates='client')

    def record_visit(self, amount: Decimal):
        self.visits = (self.visits or 0) + 1
        self.total_spent = Decimal(self.total_spent or 0) + Decimal(amount or 0)

class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    barber_id: int = Field(foreign_key='barber.id', index=True)
    service_id: int = Field(foreign_key='service.id')
    client_id: Optional[int] = Field(default=None, foreign_key='client.id')
    client_name: str
    phone: Optional[str] = None
    date: dt.date = Field(index=True)
    time: dt.time
    status: str = Field(default=STATUS_PENDING, index=True)
    price: Decimal = Field(default=Decimal('0.00'), max_digits=10, decimal_places=2)
    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime)
    updated_at: Optional[dt.datetime] = Field(default=None, sa_type=DateTime)
    reminder_sent_at: Optional[dt.datetime] = Field(default=None, sa_type=DateTime)

    barber: Optional[Barber] = Relationship(back_populates='appointments')
    service: Optional[Service] = Relationship(back_populates='appointments')
    client: Optional[Client] = Relationship(back_populates='appointments')

    @property
    def scheduled_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.time)

    @property
    def shop(self) -> Optional[Shop]:
        return self.barber.shop if self.barber else None
