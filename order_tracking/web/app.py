"""FastAPI-based web interface for the order progress tracker."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from ..auth import GoTrueIdentityProvider, InMemoryIdentityProvider
from ..config import BACKEND_REST, Settings, load_settings
from ..domain import AuthIdentity, OrderStatus, StepStatus, TrackedOrder, format_timestamp
from ..exceptions import (
    NotFoundError,
    TrackingError,
    ValidationError,
)
from ..logger import configure_logging, get_logger
from ..progress import ProgressSummary, next_action, summarize
from ..services import TrackingService
from ..storage import TrackingDatabase

log = get_logger("web")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _format_datetime(value: Optional[datetime], fmt: str = "%Y-%m-%d %H:%M") -> str:
    return value.strftime(fmt) if value else ""


templates.env.filters["datetime"] = _format_datetime
templates.env.globals["next_action"] = next_action
templates.env.globals["summarize"] = summarize
templates.env.globals["OrderStatus"] = OrderStatus
templates.env.globals["StepStatus"] = StepStatus


def create_app(
    settings: Optional[Settings] = None,
    *,
    store=None,
    identity=None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level, settings.log_dir)

    database: Optional[TrackingDatabase] = None
    if store is None:
        database = TrackingDatabase(settings)
        store = database.store
    if identity is None:
        if settings.backend == BACKEND_REST:
            identity = GoTrueIdentityProvider(
                settings.auth_url,
                settings.supabase_anon_key,
                timeout=settings.http_timeout_seconds,
            )
        else:
            identity = InMemoryIdentityProvider()

    service = TrackingService(store)
    if settings.seed_demo_data and settings.backend != BACKEND_REST:
        ensure_demo_data(service, identity)

    app = FastAPI(title="Order Progress Tracker")
    app.state.tracking_service = service
    app.state.identity = identity
    app.state.settings = settings

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        if database is not None:
            database.close()
        identity.close()

    def current_user(request: Request) -> Optional[AuthIdentity]:
        token = request.cookies.get(settings.auth_cookie_name)
        if not token:
            return None
        try:
            return identity.get_user(token)
        except TrackingError as exc:
            log.error("Could not resolve the signed in user: %s", exc)
            return None

    def set_session_cookie(response: RedirectResponse, user: AuthIdentity) -> None:
        response.set_cookie(
            settings.auth_cookie_name,
            user.access_token or "",
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )

    # ------------------------------------------------------------------
    # Public pages
    # ------------------------------------------------------------------
    @app.get("/")
    def index(request: Request):
        return templates.TemplateResponse(
            request, "index.html", {"user": current_user(request)}
        )

    @app.get("/health")
    def health(request: Request):
        service: TrackingService = request.app.state.tracking_service
        try:
            service.check_connection()
        except TrackingError as exc:
            log.error("Health check failed: %s", exc)
            return JSONResponse({"ok": False, "error": str(exc)}, status_code=503)
        return {"ok": True}

    @app.get("/track")
    def track_order(request: Request, order_number: Optional[str] = None):
        service: TrackingService = request.app.state.tracking_service
        tracked: Optional[TrackedOrder] = None
        summary: Optional[ProgressSummary] = None
        error: Optional[str] = None
        if order_number is not None:
            try:
                tracked = service.lookup_order(order_number)
                summary = summarize(tracked.steps)
            except NotFoundError:
                error = "Order number not found. Please check it and try again."
            except ValidationError as exc:
                error = str(exc)
            except TrackingError as exc:
                log.error("Order lookup for %r failed: %s", order_number, exc)
                error = "Something went wrong while searching. Please try again later."
        return templates.TemplateResponse(
            request,
            "track.html",
            {
                "order_number": order_number or "",
                "tracked": tracked,
                "summary": summary,
                "error": error,
            },
        )

    @app.get("/api/track/{order_number}")
    def track_order_json(order_number: str, request: Request):
        service: TrackingService = request.app.state.tracking_service
        try:
            tracked = service.lookup_order(order_number)
        except NotFoundError as exc:
            return JSONResponse({"error": str(exc)}, status_code=404)
        except ValidationError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        except TrackingError as exc:
            log.error("Order lookup for %r failed: %s", order_number, exc)
            return JSONResponse({"error": str(exc)}, status_code=503)
        return tracked_order_payload(tracked)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.get("/auth/signin")
    def signin_page(request: Request):
        return templates.TemplateResponse(request, "signin.html", flash(request))

    @app.post("/auth/signin")
    def signin(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
    ):
        try:
            user = identity.sign_in(email, password)
        except TrackingError as exc:
            return redirect("/auth/signin", error=str(exc))
        response = redirect("/dashboard")
        set_session_cookie(response, user)
        return response

    @app.get("/auth/signup")
    def signup_page(request: Request):
        return templates.TemplateResponse(request, "signup.html", flash(request))

    @app.post("/auth/signup")
    def signup(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        password_confirm: str = Form(""),
    ):
        if password != password_confirm:
            return redirect("/auth/signup", error="Passwords do not match")
        try:
            user = identity.sign_up(email, password)
        except TrackingError as exc:
            return redirect("/auth/signup", error=str(exc))
        if not user.access_token:
            return redirect(
                "/auth/signin",
                message="Account created. Confirm your email address, then sign in.",
            )
        response = redirect("/dashboard/company", message="Account created")
        set_session_cookie(response, user)
        return response

    @app.post("/auth/signout")
    def signout(request: Request):
        token = request.cookies.get(settings.auth_cookie_name)
        if token:
            try:
                identity.sign_out(token)
            except TrackingError as exc:
                log.warning("Sign out failed: %s", exc)
        response = redirect("/")
        response.delete_cookie(settings.auth_cookie_name)
        return response

    # ------------------------------------------------------------------
    # Company dashboard
    # ------------------------------------------------------------------
    @app.get("/dashboard")
    def dashboard(request: Request):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        context = flash(request)
        try:
            context["company"] = service.find_company(user)
            context["stats"] = service.dashboard_stats(user)
        except TrackingError as exc:
            log.error("Loading dashboard failed: %s", exc)
            context["company"] = None
            context["stats"] = None
            context["error"] = str(exc)
        context["user"] = user
        return templates.TemplateResponse(request, "dashboard.html", context)

    @app.get("/dashboard/company")
    def company_page(request: Request):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        context = flash(request)
        try:
            context["company"] = service.find_company(user)
        except TrackingError as exc:
            context["company"] = None
            context["error"] = str(exc)
        context["user"] = user
        return templates.TemplateResponse(request, "company.html", context)

    @app.post("/dashboard/company")
    def save_company(
        request: Request,
        name: str = Form(""),
        email: str = Form(""),
        description: str = Form(""),
        process_steps: str = Form(""),
    ):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        try:
            service.register_or_update_company(
                user,
                name,
                email,
                description=description,
                ordered_step_names=process_steps,
            )
        except TrackingError as exc:
            log.warning("Saving company failed: %s", exc)
            return redirect("/dashboard/company", error=str(exc))
        return redirect("/dashboard/company", message="Company information saved")

    @app.get("/dashboard/orders")
    def orders_page(request: Request):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        context = flash(request)
        context["user"] = user
        try:
            company = service.find_company(user)
            context["company"] = company
            context["orders"] = service.list_orders(user) if company else []
        except TrackingError as exc:
            log.error("Loading orders failed: %s", exc)
            context["company"] = None
            context["orders"] = []
            context["error"] = str(exc)
        return templates.TemplateResponse(request, "orders.html", context)

    @app.post("/dashboard/orders")
    def create_order(
        request: Request,
        order_number: str = Form(""),
        customer_name: str = Form(""),
        customer_email: str = Form(""),
        customer_phone: str = Form(""),
        product_description: str = Form(""),
        total_amount: str = Form(""),
    ):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        try:
            created = service.create_order(
                user,
                order_number,
                customer_name,
                product_description,
                customer_email=customer_email,
                customer_phone=customer_phone,
                total_amount=total_amount,
            )
        except TrackingError as exc:
            log.warning("Creating order %r failed: %s", order_number, exc)
            return redirect("/dashboard/orders", error=str(exc))
        return redirect(
            "/dashboard/orders",
            message=f"Order {created.order.order_number} registered",
        )

    @app.post("/dashboard/orders/{order_id}/status")
    def change_order_status(
        order_id: str,
        request: Request,
        status: str = Form(...),
    ):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        try:
            service.update_order_status(user, order_id, status)
        except TrackingError as exc:
            return redirect("/dashboard/orders", error=str(exc))
        return redirect("/dashboard/orders", message="Order status updated")

    @app.post("/dashboard/progress/{step_id}/notes")
    def save_step_notes(
        step_id: str,
        request: Request,
        notes: str = Form(""),
    ):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        try:
            service.update_step_notes(user, step_id, notes)
        except TrackingError as exc:
            return redirect("/dashboard/orders", error=str(exc))
        return redirect("/dashboard/orders", message="Notes saved")

    @app.post("/dashboard/progress/{step_id}/{action}")
    def advance_step(step_id: str, action: str, request: Request):
        user = current_user(request)
        if user is None:
            return redirect("/auth/signin")
        service: TrackingService = request.app.state.tracking_service
        try:
            service.advance_step(user, step_id, action)
        except TrackingError as exc:
            log.warning("Advancing step %s (%s) failed: %s", step_id, action, exc)
            return redirect("/dashboard/orders", error="Progress update failed: " + str(exc))
        return redirect("/dashboard/orders", message="Progress updated")

    return app


def redirect(path: str, **params: str) -> RedirectResponse:
    query = {key: value for key, value in params.items() if value}
    if query:
        path += "?" + urlencode(query)
    return RedirectResponse(path, status_code=303)


def flash(request: Request) -> Dict[str, Any]:
    return {
        "message": request.query_params.get("message"),
        "error": request.query_params.get("error"),
    }


def tracked_order_payload(tracked: TrackedOrder) -> Dict[str, Any]:
    summary = summarize(tracked.steps)
    order = tracked.order
    return {
        "order": {
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "product_description": order.product_description,
            "total_amount": str(order.total_amount) if order.total_amount is not None else None,
            "status": order.status.value,
            "created_at": format_timestamp(order.created_at),
        },
        "company": (
            {"name": tracked.company.name, "email": tracked.company.email}
            if tracked.company
            else None
        ),
        "progress": {
            "percentage": summary.percentage,
            "summary": summary.summary,
            "completed_steps": summary.completed_steps,
            "total_steps": summary.total_steps,
        },
        "steps": [
            {
                "step_name": step.step_name,
                "step_order": step.step_order,
                "status": step.status.value,
                "notes": step.notes,
                "started_at": format_timestamp(step.started_at),
                "completed_at": format_timestamp(step.completed_at),
            }
            for step in tracked.steps
        ],
    }


DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo-password"


def ensure_demo_data(service: TrackingService, identity) -> None:
    if not isinstance(identity, InMemoryIdentityProvider):
        return
    try:
        user = identity.sign_up(DEMO_EMAIL, DEMO_PASSWORD)
    except ValidationError:
        return

    service.register_or_update_company(
        user,
        name="Precision Works Ltd.",
        email="orders@precision-works.example",
        description="Custom machined parts and welded assemblies",
        ordered_step_names=[
            "Design review",
            "Material procurement",
            "Machining",
            "Welding",
            "Quality inspection",
            "Shipping",
        ],
    )

    first = service.create_order(
        user,
        "ORD-2024-001",
        "Hannah Lee",
        "Stainless steel machine frame, 2 units",
        customer_email="hannah.lee@example.com",
        total_amount="12500",
    )
    for step in first.steps[:2]:
        service.start_step(user, step.id)
        service.finish_step(user, step.id)
    service.start_step(user, first.steps[2].id)

    service.create_order(
        user,
        "ORD-2024-002",
        "Marcus Chen",
        "Replacement gearbox housing",
        customer_phone="+1 555 0100",
    )
