import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import orders as order_service
import security
from config import Settings
from database import Database, oid_to_str, to_object_id, to_utc_naive, utcnow
from errors import AppError, NotFoundError, PersistenceError, ValidationError
from schemas import Announcement, Countdown, OrderRequest, Product, Video

logger = logging.getLogger(__name__)

# -----------------------------
# Request bodies
# -----------------------------
class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AnnouncementUpdate(BaseModel):
    message: str = Field(..., min_length=1)


class CountdownUpdate(BaseModel):
    title: Optional[str] = None
    end_date: Optional[datetime] = None


class VideoUpdate(BaseModel):
    youtube_url: str = Field(..., min_length=1)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, gt=0)
    offer_price: Optional[float] = Field(None, gt=0)
    image_url: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[str] = None


# -----------------------------
# Dependencies
# -----------------------------

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def changes_of(payload: BaseModel) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")
    return changes


# -----------------------------
# Error rendering
# -----------------------------

def _error_body(request: Request, message: str, details: Optional[str] = None) -> dict:
    body = {"error": message}
    if details and request.app.state.settings.is_development:
        body["details"] = details
    return body


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
    return JSONResponse(_error_body(request, exc.message, exc.details), status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse({"error": message}, status_code=400)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


# -----------------------------
# App
# -----------------------------

def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    db = database or Database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        required = ["jwt_secret"]
        if not db.configured:
            required.append("database_url")
        settings.require(*required)
        logger.info("Storefront API starting (%s)", settings.app_env)
        yield
        db.close()

    app = FastAPI(title="Home Shoppers API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def admin_page_guard(request: Request, call_next):
        redirect = security.guard_response(
            request.url.path,
            request.cookies.get(security.COOKIE_NAME),
            request.app.state.settings.jwt_secret,
        )
        if redirect is not None:
            return redirect
        return await call_next(request)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    register_public_routes(app)
    register_auth_routes(app)
    register_admin_routes(app)
    register_pages(app)
    return app


# -----------------------------
# Public endpoints
# -----------------------------

def active_countdown(db: Database):
    try:
        doc = db["countdowns"].find_one({"end_date": {"$gte": utcnow()}}, sort=[("created_at", -1)])
    except PyMongoError as e:
        logger.exception("Error fetching countdown")
        raise PersistenceError("Failed to fetch countdown", details=str(e)) from e
    return oid_to_str(doc) if doc else None


def register_public_routes(app: FastAPI) -> None:
    @app.get("/")
    def root():
        return {"message": "Home Shoppers API"}

    @app.get("/api/storefront")
    def storefront(db: Database = Depends(get_db)):
        return {
            "announcements": db.get_documents("announcements"),
            "countdown": active_countdown(db),
            "products": db.get_documents("products", limit=3),
            "videos": db.get_documents("videos"),
        }

    @app.get("/api/announcements")
    def public_announcements(db: Database = Depends(get_db)):
        return {"announcements": db.get_documents("announcements")}

    @app.get("/api/countdown")
    def public_countdown(db: Database = Depends(get_db)):
        return {"countdown": active_countdown(db)}

    @app.get("/api/videos")
    def public_videos(db: Database = Depends(get_db)):
        return {"videos": db.get_documents("videos")}

    @app.get("/api/products")
    def public_products(limit: Optional[int] = None, db: Database = Depends(get_db)):
        return {"products": db.get_documents("products", limit=limit)}

    @app.get("/api/products/{product_id}")
    def public_product(product_id: str, db: Database = Depends(get_db)):
        try:
            doc = db["products"].find_one({"_id": to_object_id(product_id, "Product")})
        except PyMongoError as e:
            logger.exception("Error fetching product %s", product_id)
            raise PersistenceError("Failed to fetch product", details=str(e)) from e
        if not doc:
            raise NotFoundError("Product not found")
        return {"product": oid_to_str(doc)}

    @app.post("/api/orders", status_code=201)
    def create_order(
        payload: OrderRequest,
        db: Database = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ):
        order_number, order = order_service.submit_order(db, payload, strategy=settings.order_sequence)
        return {"success": True, "order_number": order_number, "order": order}

    # Diagnostics
    @app.get("/test")
    def test_database(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
            "jwt_secret": "✅ Set" if settings.jwt_secret else "❌ Not Set",
            "collections": [],
        }
        try:
            response["collections"] = db.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except AppError as e:
            response["database"] = f"⚠️  {e.message}"
        except PyMongoError as e:
            response["database"] = f"❌ Error: {str(e)[:50]}"
        return response


# -----------------------------
# Admin session
# -----------------------------

def register_auth_routes(app: FastAPI) -> None:
    @app.post("/api/admin/login")
    def admin_login(
        req: LoginRequest,
        request: Request,
        db: Database = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ):
        if not req.email or not req.password:
            raise ValidationError("Email and password are required")
        token, admin = security.login(db, settings, req.email, req.password)
        response = JSONResponse({"success": True, "admin": admin})
        security.set_session_cookie(response, token, security.cookie_secure(request, settings))
        return response

    @app.post("/api/admin/logout")
    def admin_logout():
        response = JSONResponse({"success": True})
        security.clear_session_cookie(response)
        return response


# -----------------------------
# Admin endpoints (CRUD)
# -----------------------------

def register_admin_routes(app: FastAPI) -> None:
    admin = [Depends(security.get_current_admin)]

    # Announcements
    @app.get("/api/admin/announcements", dependencies=admin)
    def list_announcements(db: Database = Depends(get_db)):
        return {"announcements": db.get_documents("announcements")}

    @app.post("/api/admin/announcements", status_code=201, dependencies=admin)
    def create_announcement(payload: Announcement, db: Database = Depends(get_db)):
        return {"success": True, "announcement": db.create_document("announcements", payload)}

    @app.patch("/api/admin/announcements/{announcement_id}", dependencies=admin)
    def update_announcement(announcement_id: str, payload: AnnouncementUpdate, db: Database = Depends(get_db)):
        doc = db.update_document("announcements", announcement_id, changes_of(payload))
        return {"success": True, "announcement": doc}

    @app.delete("/api/admin/announcements/{announcement_id}", dependencies=admin)
    def delete_announcement(announcement_id: str, db: Database = Depends(get_db)):
        db.delete_document("announcements", announcement_id)
        return {"success": True}

    # Countdowns
    @app.get("/api/admin/countdowns", dependencies=admin)
    def list_countdowns(db: Database = Depends(get_db)):
        return {"countdowns": db.get_documents("countdowns")}

    @app.post("/api/admin/countdowns", status_code=201, dependencies=admin)
    def create_countdown(payload: Countdown, db: Database = Depends(get_db)):
        data = payload.model_dump()
        data["end_date"] = to_utc_naive(payload.end_date)
        return {"success": True, "countdown": db.create_document("countdowns", data)}

    @app.patch("/api/admin/countdowns/{countdown_id}", dependencies=admin)
    def update_countdown(countdown_id: str, payload: CountdownUpdate, db: Database = Depends(get_db)):
        changes = changes_of(payload)
        if changes.get("end_date") is not None:
            changes["end_date"] = to_utc_naive(changes["end_date"])
        elif "end_date" in changes:
            raise ValidationError("End date is required")
        return {"success": True, "countdown": db.update_document("countdowns", countdown_id, changes)}

    @app.delete("/api/admin/countdowns/{countdown_id}", dependencies=admin)
    def delete_countdown(countdown_id: str, db: Database = Depends(get_db)):
        db.delete_document("countdowns", countdown_id)
        return {"success": True}

    # Videos
    @app.get("/api/admin/videos", dependencies=admin)
    def list_videos(db: Database = Depends(get_db)):
        return {"videos": db.get_documents("videos")}

    @app.post("/api/admin/videos", status_code=201, dependencies=admin)
    def create_video(payload: Video, db: Database = Depends(get_db)):
        return {"success": True, "video": db.create_document("videos", payload)}

    @app.patch("/api/admin/videos/{video_id}", dependencies=admin)
    def update_video(video_id: str, payload: VideoUpdate, db: Database = Depends(get_db)):
        return {"success": True, "video": db.update_document("videos", video_id, changes_of(payload))}

    @app.delete("/api/admin/videos/{video_id}", dependencies=admin)
    def delete_video(video_id: str, db: Database = Depends(get_db)):
        db.delete_document("videos", video_id)
        return {"success": True}

    # Products
    @app.get("/api/admin/products", dependencies=admin)
    def list_products(db: Database = Depends(get_db)):
        return {"products": db.get_documents("products")}

    @app.post("/api/admin/products", status_code=201, dependencies=admin)
    def create_product(payload: Product, db: Database = Depends(get_db)):
        return {"success": True, "product": db.create_document("products", payload)}

    @app.patch("/api/admin/products/{product_id}", dependencies=admin)
    def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
        changes = changes_of(payload)
        if "name" in changes and not changes["name"]:
            raise ValidationError("Name is required")
        if "price" in changes and changes["price"] is None:
            raise ValidationError("Price is required")
        return {"success": True, "product": db.update_document("products", product_id, changes)}

    @app.delete("/api/admin/products/{product_id}", dependencies=admin)
    def delete_product(product_id: str, db: Database = Depends(get_db)):
        db.delete_document("products", product_id)
        return {"success": True}

    # Orders
    @app.get("/api/admin/orders", dependencies=admin)
    def list_orders(
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        db: Database = Depends(get_db),
    ):
        return {"orders": order_service.list_orders(db, status, start_date, end_date)}

    @app.patch("/api/admin/orders/{order_id}", dependencies=admin)
    def update_order(order_id: str, payload: OrderStatusUpdate, db: Database = Depends(get_db)):
        order = order_service.update_order_status(db, order_id, payload.status)
        logger.info("Order %s set to %s", order.get("order_number"), payload.status)
        return {"success": True, "order": order}

    @app.delete("/api/admin/orders/{order_id}", dependencies=admin)
    def delete_order(order_id: str, db: Database = Depends(get_db)):
        db.delete_document("orders", order_id)
        return {"success": True}


# -----------------------------
# Pages (guarded by admin_page_guard)
# -----------------------------
DASHBOARD_SECTIONS = ["orders", "products", "announcements", "countdowns", "videos"]


def register_pages(app: FastAPI) -> None:
    @app.get("/auth/v1/login", response_class=HTMLResponse)
    def login_page():
        return (
            "<!doctype html><title>Admin login</title>"
            '<form id="login"><input name="email" type="email"><input name="password" type="password">'
            "<button>Sign in</button></form>"
        )

    @app.get("/dashboard/default", response_class=HTMLResponse)
    def dashboard_home():
        links = "".join(f'<li><a href="/dashboard/default/{s}">{s.title()}</a></li>' for s in DASHBOARD_SECTIONS)
        return f"<!doctype html><title>Dashboard</title><ul>{links}</ul>"

    @app.get("/dashboard/default/{section}", response_class=HTMLResponse)
    def dashboard_section(section: str):
        if section not in DASHBOARD_SECTIONS:
            raise NotFoundError("Page not found")
        return f'<!doctype html><title>{section.title()}</title><div id="{section}" data-api="/api/admin/{section}"></div>'


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
