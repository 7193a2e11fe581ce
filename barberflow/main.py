import logging
import re
import secrets
from contextlib import asynccontextmanager
from datetime import date, time
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil import parser as dateparser
from fastapi import FastAPI, Request, Depends, HTTPException, Header
from sqlmodel import Session, select

from .db import engine, init_db, get_session
from .models import Shop, User, Barber, Service, Client, Appointment, STATUSES, STATUS_PENDING
from .settings import load_settings
from .auth import hash_password, verify_password, create_access_token, decode_access_token
from .errors import Conflict, NotConfigured
from .evolution import EvolutionApiManager
from .lifecycle import AppointmentLifecycle, InvalidTransition
from .logic import (
    count_by_shop_and_status,
    ensure_client,
    find_by_barber,
    find_by_shop_and_date,
    find_by_shop_and_range,
    find_pending_by_shop,
    find_slot_taken,
)
from .notifications import AppointmentNotifier
from .scheduler import start_scheduler
from .whatsapp import EvolutionWhatsAppService

# ----------------- App & Settings -----------------
settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

evolution = EvolutionApiManager.from_settings(settings)
notifier = AppointmentNotifier(EvolutionWhatsAppService.from_settings(settings))
lifecycle = AppointmentLifecycle(notifier)

init_db()

@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.reminder_scheduler_enabled:
        scheduler = start_scheduler(engine, notifier, settings)
    if not evolution.is_configured():
        logger.warning("EVOLUTION_API_URL/EVOLUTION_API_KEY not set; WhatsApp features disabled")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)

app = FastAPI(title="Barberflow", lifespan=lifespan)

def get_evolution() -> EvolutionApiManager:
    return evolution

def get_lifecycle() -> AppointmentLifecycle:
    return lifecycle

# ----------------- Auth helper -----------------
def current_user(
    authorization: str = Header(None),
    session: Session = Depends(get_session),
) -> User:
    if not authorization:
        raise HTTPException(401, "Authentication required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(401, "Bearer token expected")
    uid = decode_access_token(token, settings.jwt_secret)
    if uid is None:
        raise HTTPException(401, "Invalid token")
    u = session.get(User, uid)
    if not u:
        raise HTTPException(401, "Unknown user")
    return u

def current_shop(u: User = Depends(current_user), session: Session = Depends(get_session)) -> Shop:
    shop = session.get(Shop, u.shop_id)
    if not shop:
        raise HTTPException(404, "Shop not found")
    return shop

# ----------------- Helpers -----------------
def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "shop"

def _parse_date(value) -> date:
    try:
        return dateparser.parse(str(value)).date()
    except (ValueError, OverflowError):
        raise HTTPException(400, f"Invalid date: {value}")

def _parse_time(value) -> time:
    try:
        return dateparser.parse(str(value)).time().replace(second=0, microsecond=0)
    except (ValueError, OverflowError):
        raise HTTPException(400, f"Invalid time: {value}")

def _parse_price(value) -> Decimal:
    try:
        price = Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise HTTPException(400, f"Invalid price: {value}")
    if price < 0:
        raise HTTPException(400, "Price must be positive or zero")
    return price

def _parse_duration(value) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f"Invalid duration: {value}")
    if minutes <= 0:
        raise HTTPException(400, "Duration must be positive")
    return minutes

def _appointment_out(a: Appointment) -> dict:
    return {
        "id": a.id,
        "clientName": a.client_name,
        "phone": a.phone,
        "date": a.date.isoformat(),
        "time": a.time.strftime("%H:%M"),
        "status": a.status,
        "price": str(a.price),
        "barber": {"id": a.barber.id, "name": a.barber.name} if a.barber else None,
        "service": {"id": a.service.id, "name": a.service.name} if a.service else None,
        "client": {"id": a.client.id, "name": a.client.name} if a.client else None,
        "reminderSentAt": a.reminder_sent_at.isoformat() if a.reminder_sent_at else None,
    }

def _shop_appointment(session: Session, shop: Shop, appointment_id: int) -> Appointment:
    a = session.get(Appointment, appointment_id)
    if not a or not a.barber or a.barber.shop_id != shop.id:
        raise HTTPException(404, "Appointment not found")
    return a

def _shop_row(session: Session, model, shop: Shop, row_id, label: str):
    row = session.get(model, row_id) if row_id else None
    if not row or row.shop_id != shop.id:
        raise HTTPException(404, f"{label} not found")
    return row

def _book(session: Session, shop: Shop, data: dict, lc: AppointmentLifecycle, public: bool) -> Appointment:
    barber = _shop_row(session, Barber, shop, data.get("barber_id"), "Barber")
    service = _shop_row(session, Service, shop, data.get("service_id"), "Service")
    day = _parse_date(data.get("date") or settings.local_now().date().isoformat())
    at = _parse_time(data.get("time") or settings.local_now().strftime("%H:%M"))

    if find_slot_taken(session, barber.id, day, at):
        raise HTTPException(409, "This barber already has an appointment at that time.")

    phone = (data.get("phone") or "").strip() or None
    client_name = (data.get("client_name") or "").strip()
    client = None
    if not public and data.get("client_id"):
        client = _shop_row(session, Client, shop, data["client_id"], "Client")
    elif phone:
        client = ensure_client(session, shop.id, phone, client_name)

    status = STATUS_PENDING if public else data.get("status", STATUS_PENDING)
    if status not in STATUSES:
        raise HTTPException(400, f"Invalid status: {status}")

    appt = Appointment(
        barber_id=barber.id,
        service_id=service.id,
        client_id=client.id if client else None,
        client_name=client_name or (client.name if client else "Cliente"),
        phone=phone or (client.phone if client else None),
        date=day,
        time=at,
        status=status,
        price=_parse_price(data["price"]) if data.get("price") is not None else service.price,
    )
    return lc.create(session, appt)

# ----------------- Health -----------------
@app.get("/health")
def health():
    return {"ok": True, "whatsapp": evolution.is_configured()}

# ----------------- Auth APIs -----------------
@app.post("/api/auth/signup")
async def signup(req: Request, session: Session = Depends(get_session)):
    data = await req.json()
    email = data["email"].strip().lower()
    password = data["password"]
    name = data.get("shop", "Barbearia")

    if len(password) < 6:
        raise HTTPException(400, "Password must have at least 6 characters")
    if session.exec(select(User).where(User.email == email)).first():
        raise HTTPException(409, "Email already registered")

    slug = data.get("slug") or f"{_slugify(name)}-{secrets.token_hex(3)}"
    if session.exec(select(Shop).where(Shop.slug == slug)).first():
        raise HTTPException(409, "Slug already in use")

    shop = Shop(name=name, slug=slug, phone=data.get("phone"))
    session.add(shop); session.commit(); session.refresh(shop)

    u = User(shop_id=shop.id, email=email, password_hash=hash_password(password))
    session.add(u); session.commit(); session.refresh(u)

    token = create_access_token(str(u.id), settings.jwt_secret, settings.jwt_expire_minutes)
    return {"access_token": token, "slug": shop.slug}

@app.post("/api/auth/login")
async def login(req: Request, session: Session = Depends(get_session)):
    data = await req.json()
    email = data["email"].strip().lower()
    password = data["password"]

    u = session.exec(select(User).where(User.email == email)).first()
    if not u or not verify_password(password, u.password_hash):
        raise HTTPException(401, "Invalid credentials")

    token = create_access_token(str(u.id), settings.jwt_secret, settings.jwt_expire_minutes)
    return {"access_token": token, "slug": u.shop.slug}

# ----------------- WhatsApp instance -----------------
@app.get("/api/shops/whatsapp/status")
def whatsapp_status(shop: Shop = Depends(current_shop), manager: EvolutionApiManager = Depends(get_evolution)):
    if not manager.is_configured():
        return {
            "configured": False,
            "instanceName": None,
            "state": "close",
            "message": "Evolution API is not configured on the server.",
        }
    return {"configured": True, **manager.connection_state(shop).to_dict()}

@app.post("/api/shops/whatsapp/create")
def whatsapp_create(
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    manager: EvolutionApiManager = Depends(get_evolution),
):
    result = manager.create_instance(session, shop)
    if isinstance(result.error, Conflict):
        raise HTTPException(409, str(result.error))
    if isinstance(result.error, NotConfigured):
        raise HTTPException(503, str(result.error))
    if result.error is not None:
        raise HTTPException(400, str(result.error))
    return {
        "instanceName": result.instance_name,
        "qrcode": result.qrcode,
        "message": "Scan the QR code with WhatsApp on your phone to connect.",
    }

@app.get("/api/shops/whatsapp/qrcode")
def whatsapp_qrcode(shop: Shop = Depends(current_shop), manager: EvolutionApiManager = Depends(get_evolution)):
    if not shop.evolution_instance_name:
        raise HTTPException(400, "No WhatsApp instance yet. Create one first.")
    result = manager.fetch_qrcode(shop)
    if result.error is not None:
        raise HTTPException(400, str(result.error))
    return {"qrcode": result.qrcode, "message": "Scan the QR code with WhatsApp on your phone."}

# ----------------- Staff & services -----------------
@app.post("/api/barbers", status_code=201)
async def create_barber(req: Request, shop: Shop = Depends(current_shop), session: Session = Depends(get_session)):
    data = await req.json()
    if not (data.get("name") or "").strip():
        raise HTTPException(400, "Name is required")
    b = Barber(shop_id=shop.id, name=data["name"].strip(), phone=data.get("phone"))
    session.add(b); session.commit(); session.refresh(b)
    return {"id": b.id, "name": b.name}

@app.post("/api/services", status_code=201)
async def create_service(req: Request, shop: Shop = Depends(current_shop), session: Session = Depends(get_session)):
    data = await req.json()
    if not (data.get("name") or "").strip():
        raise HTTPException(400, "Name is required")
    s = Service(shop_id=shop.id, name=data["name"].strip(), duration=_parse_duration(data.get("duration", 30)),
                price=_parse_price(data.get("price", "0")))
    session.add(s); session.commit(); session.refresh(s)
    return {"id": s.id, "name": s.name, "price": str(s.price)}

# ----------------- Appointments -----------------
@app.get("/api/appointments")
def list_appointments(
    date: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    barber_id: Optional[int] = None,
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    now = settings.local_now()
    if date:
        rows = find_by_shop_and_date(session, shop.id, _parse_date(date))
    elif start_date and end_date:
        rows = find_by_shop_and_range(session, shop.id, _parse_date(start_date), _parse_date(end_date))
    elif barber_id:
        barber = _shop_row(session, Barber, shop, barber_id, "Barber")
        rows = find_by_barber(session, barber.id)
    else:
        rows = find_by_shop_and_date(session, shop.id, now.date())

    lc.auto_complete(session, rows, now)
    return [_appointment_out(a) for a in rows]

@app.get("/api/appointments/pending")
def list_pending(shop: Shop = Depends(current_shop), session: Session = Depends(get_session)):
    return [_appointment_out(a) for a in find_pending_by_shop(session, shop.id)]

@app.post("/api/appointments", status_code=201)
async def create_appointment(
    req: Request,
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    data = await req.json()
    return _appointment_out(_book(session, shop, data, lc, public=False))

@app.patch("/api/appointments/{appointment_id}")
async def update_appointment_status(
    appointment_id: int,
    req: Request,
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    data = await req.json()
    a = _shop_appointment(session, shop, appointment_id)
    if "status" not in data:
        raise HTTPException(400, "Only status updates are supported")
    try:
        lc.set_status(session, a, data["status"])
    except InvalidTransition as exc:
        raise HTTPException(409, str(exc))
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return _appointment_out(a)

def _apply(transition, session: Session, a: Appointment) -> dict:
    try:
        transition(session, a)
    except InvalidTransition as exc:
        raise HTTPException(409, str(exc))
    return _appointment_out(a)

@app.post("/api/appointments/{appointment_id}/confirm")
def confirm_appointment(
    appointment_id: int,
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    return _apply(lc.confirm, session, _shop_appointment(session, shop, appointment_id))

@app.post("/api/appointments/{appointment_id}/complete")
def complete_appointment(
    appointment_id: int,
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    return _apply(lc.complete, session, _shop_appointment(session, shop, appointment_id))

@app.post("/api/appointments/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    shop: Shop = Depends(current_shop),
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    return _apply(lc.cancel, session, _shop_appointment(session, shop, appointment_id))

# ----------------- Public booking -----------------
@app.post("/api/shops/public/{slug}/appointments", status_code=201)
async def create_public_appointment(
    slug: str,
    req: Request,
    session: Session = Depends(get_session),
    lc: AppointmentLifecycle = Depends(get_lifecycle),
):
    shop = session.exec(select(Shop).where(Shop.slug == slug)).first()
    if not shop:
        raise HTTPException(404, "Shop not found")
    data = await req.json()
    return _appointment_out(_book(session, shop, data, lc, public=True))

# ----------------- Dashboard -----------------
@app.get("/api/dashboard/stats")
def dashboard_stats(shop: Shop = Depends(current_shop), session: Session = Depends(get_session)):
    return {status: count_by_shop_and_status(session, shop.id, status) for status in STATUSES}
