import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional

from fastapi import FastAPI, Depends, File, Form, Header, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.middleware.base import BaseHTTPMiddleware

import analytics
import auth
import portfolios
import templates
from auth import Identity
from config import get_settings
from database import connect, ensure_indexes, get_database, to_public
from errors import AuthenticationError, ForbiddenError, PortfolioHubError, UpstreamError
from mailer import Mailer, send_password_reset_email, send_verification_email
from schemas import (PortfolioCreate, PortfolioUpdate, ProfileUpdate, ReviewCreate, TemplateCreate, TemplateUpdate,
                     ViewCreate)
from uploads import Uploader, owns_blob, user_folder

logger = logging.getLogger("portfoliohub.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    client = connect(settings)
    app.state.db = get_database(client, settings)
    app.state.uploader = Uploader(settings)
    app.state.mailer = Mailer(settings)
    try:
        ensure_indexes(app.state.db)
    except PyMongoError as e:
        # Keep serving; /test reports the database state.
        logger.error("Could not create indexes: %s", e)
    yield
    app.state.uploader.close()
    client.close()


app = FastAPI(title="Portfolio Hub API", lifespan=lifespan)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with a short request id, status and duration."""

    def __init__(self, app, exclude_paths=None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/", "/test"]

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start = time.time()
        response = await call_next(request)
        duration = (time.time() - start) * 1000

        status = response.status_code
        level = logging.INFO if status < 400 else logging.WARNING if status < 500 else logging.ERROR
        logger.log(level, "[%s] %s %s - %s - %.2fms", request_id, request.method, request.url.path, status, duration)
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortfolioHubError)
async def handle_domain_error(request: Request, exc: PortfolioHubError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(PyMongoError)
async def handle_database_error(request: Request, exc: PyMongoError):
    logger.error("%s %s database error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": f"Database error: {str(exc)[:200]}"})


# Dependencies

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_uploader(request: Request) -> Uploader:
    return request.app.state.uploader


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


def get_optional_identity(token: Optional[str] = Depends(get_token), db: Database = Depends(get_db)) -> Optional[Identity]:
    if not token:
        return None
    return auth.resolve_identity(db, token)


def get_current_identity(token: Optional[str] = Depends(get_token), db: Database = Depends(get_db)) -> Identity:
    if not token:
        raise AuthenticationError("Not authenticated")
    return auth.resolve_identity(db, token)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def read_upload(file: UploadFile, uploader: Uploader) -> bytes:
    # One byte past the limit is enough for validate() to reject it.
    return file.file.read(uploader.settings.max_upload_bytes + 1)


# Health
@app.get("/")
def read_root():
    return {"message": "Portfolio Hub API running"}

@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    status = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "❌ Not Set" if not os.getenv("DATABASE_URL") else "✅ Set",
        "database_name": "❌ Not Set" if not os.getenv("DATABASE_NAME") else "✅ Set",
        "collections": []
    }
    try:
        cols = db.list_collection_names()
        status["database"] = "✅ Connected"
        status["collections"] = cols
    except PyMongoError as e:
        status["database"] = f"❌ Error: {str(e)[:80]}"
    return status

# Auth
class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_-]+$")
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=100)

class LoginRequest(BaseModel):
    login: str = Field(..., description="Email address or username")
    password: str

class TokenRequest(BaseModel):
    token: str

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResendVerificationRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=8, max_length=128)

class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)

@app.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest, db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    user = auth.register(db, payload.username, payload.email, payload.password, payload.full_name)
    verification = auth.issue_verification(db, user["id"])
    sent = send_verification_email(mailer, user["email"], verification)
    token, _ = auth.login(db, get_settings(), user["email"], payload.password)
    return {"token": token, "user": user, "verification_email_sent": sent.success}

@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    token, user = auth.login(db, get_settings(), payload.login, payload.password)
    return {"token": token, "user": user}

@app.post("/auth/logout")
def logout(token: Optional[str] = Depends(get_token), db: Database = Depends(get_db)):
    if not token:
        raise AuthenticationError("Not authenticated")
    return {"ok": auth.logout(db, token)}

@app.get("/auth/me")
def me(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return auth.get_user(db, identity.user_id)

@app.post("/auth/verify")
def verify(payload: TokenRequest, db: Database = Depends(get_db)):
    return auth.verify_email(db, payload.token)

@app.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Database = Depends(get_db),
                    mailer: Mailer = Depends(get_mailer)):
    issued = auth.request_password_reset(db, payload.email)
    if issued:
        user, token = issued
        send_password_reset_email(mailer, user["email"], token)
    return {"message": "If that email is registered, a reset link has been sent"}

@app.post("/auth/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    auth.reset_password(db, payload.token, payload.password)
    return {"ok": True}

@app.post("/auth/change-password")
def change_password(payload: ChangePasswordRequest, identity: Identity = Depends(get_current_identity),
                    db: Database = Depends(get_db)):
    auth.change_password(db, identity, payload.current_password, payload.new_password)
    return {"ok": True}

@app.post("/auth/resend-verification")
def resend_verification(payload: ResendVerificationRequest, db: Database = Depends(get_db),
                        mailer: Mailer = Depends(get_mailer)):
    issued = auth.request_verification_resend(db, payload.email)
    if issued:
        user, token = issued
        if not send_verification_email(mailer, user["email"], token).success:
            raise UpstreamError("Failed to send verification email. Please try again later.")
    return {"message": "If that email is registered, a verification link has been sent"}

@app.put("/auth/profile")
def update_profile(payload: ProfileUpdate, identity: Identity = Depends(get_current_identity),
                   db: Database = Depends(get_db)):
    return auth.update_profile(db, identity, payload)

@app.post("/auth/profile/picture")
def upload_profile_picture(file: UploadFile = File(...), identity: Identity = Depends(get_current_identity),
                           db: Database = Depends(get_db), uploader: Uploader = Depends(get_uploader)):
    data = read_upload(file, uploader)
    folder = f"{user_folder(uploader.settings, identity.user_id)}/profile"
    image = uploader.upload(data, file.filename, file.content_type, folder=folder)
    return auth.set_profile_picture(db, identity, image.to_dict(), uploader)

@app.delete("/auth/profile/picture")
def delete_profile_picture(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db),
                           uploader: Uploader = Depends(get_uploader)):
    return auth.clear_profile_picture(db, identity, uploader)

# Templates
@app.get("/templates")
def list_templates(category: Optional[str] = None, include_unpublished: bool = False,
                   identity: Optional[Identity] = Depends(get_optional_identity), db: Database = Depends(get_db)):
    if include_unpublished and not (identity and identity.is_admin):
        raise ForbiddenError("Only admins can list unpublished templates")
    return templates.list_templates(db, category, published_only=not include_unpublished)

@app.get("/templates/stats")
def template_stats(db: Database = Depends(get_db)):
    return templates.category_stats(db)

@app.get("/templates/defaults/{category}")
def template_defaults(category: str):
    return templates.get_template_defaults(category)

@app.get("/templates/{template_id}")
def get_template(template_id: str, db: Database = Depends(get_db)):
    return to_public(templates.get_template(db, template_id))

@app.post("/templates", status_code=201)
def create_template(payload: TemplateCreate, identity: Identity = Depends(get_current_identity),
                    db: Database = Depends(get_db)):
    return templates.create_template(db, identity, payload)

@app.put("/templates/{template_id}")
def update_template(template_id: str, payload: TemplateUpdate, identity: Identity = Depends(get_current_identity),
                    db: Database = Depends(get_db)):
    return templates.update_template(db, identity, template_id, payload)

@app.delete("/templates/{template_id}")
def delete_template(template_id: str, identity: Identity = Depends(get_current_identity),
                    db: Database = Depends(get_db)):
    templates.delete_template(db, identity, template_id)
    return {"ok": True}

@app.post("/templates/{template_id}/enhance")
def enhance_template(template_id: str, identity: Identity = Depends(get_current_identity),
                     db: Database = Depends(get_db)):
    return templates.enhance_template(db, identity, template_id)

@app.post("/templates/{template_id}/reviews", status_code=201)
def add_review(template_id: str, payload: ReviewCreate, identity: Identity = Depends(get_current_identity),
               db: Database = Depends(get_db)):
    return templates.add_review(db, identity, template_id, payload)

# Portfolios
@app.get("/portfolios")
def list_portfolios(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return portfolios.list_user_portfolios(db, identity)

@app.post("/portfolios", status_code=201)
def create_portfolio(payload: PortfolioCreate, identity: Identity = Depends(get_current_identity),
                     db: Database = Depends(get_db)):
    return portfolios.create_portfolio(db, identity, payload)

@app.get("/portfolios/{portfolio_id}")
def get_portfolio(portfolio_id: str, identity: Identity = Depends(get_current_identity),
                  db: Database = Depends(get_db)):
    return portfolios.get_portfolio(db, identity, portfolio_id)

@app.put("/portfolios/{portfolio_id}")
def update_portfolio(portfolio_id: str, payload: PortfolioUpdate, identity: Identity = Depends(get_current_identity),
                     db: Database = Depends(get_db), uploader: Uploader = Depends(get_uploader)):
    return portfolios.update_portfolio(db, identity, portfolio_id, payload, uploader)

@app.delete("/portfolios/{portfolio_id}")
def delete_portfolio(portfolio_id: str, identity: Identity = Depends(get_current_identity),
                     db: Database = Depends(get_db), uploader: Uploader = Depends(get_uploader)):
    portfolios.delete_portfolio(db, identity, portfolio_id, uploader)
    return {"ok": True}

@app.put("/portfolios/{portfolio_id}/sections/{section}")
def update_section(portfolio_id: str, section: str, patch: Dict[str, Any],
                   identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return portfolios.update_portfolio_section(db, identity, portfolio_id, section, patch)

@app.delete("/portfolios/{portfolio_id}/sections/{section}/items")
def delete_section_item(portfolio_id: str, section: str, item_id: Optional[str] = Query(None),
                        item_index: Optional[str] = Query(None),
                        identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return portfolios.delete_portfolio_item(db, identity, portfolio_id, section, item_id=item_id, item_index=item_index)

# Public site
@app.get("/public/{subdomain}")
def public_portfolio(subdomain: str, custom_domain: Optional[str] = None, db: Database = Depends(get_db)):
    return portfolios.get_public_portfolio(db, subdomain, custom_domain)

# Uploads
@app.post("/uploads", status_code=201)
def upload_image(file: UploadFile = File(...), public_id: Optional[str] = Form(None),
                 identity: Identity = Depends(get_current_identity), uploader: Uploader = Depends(get_uploader)):
    data = read_upload(file, uploader)
    folder = user_folder(uploader.settings, identity.user_id)
    result = uploader.upload(data, file.filename, file.content_type, folder=folder, public_id=public_id)
    return result.to_dict()

@app.delete("/uploads/{public_id:path}")
def delete_image(public_id: str, identity: Identity = Depends(get_current_identity),
                 uploader: Uploader = Depends(get_uploader)):
    if not identity.is_admin and not owns_blob(public_id, user_folder(uploader.settings, identity.user_id)):
        raise ForbiddenError("Not authorized to delete this image")
    return {"deleted": uploader.delete(public_id)}

# Analytics
@app.post("/analytics/views")
def record_view(payload: ViewCreate, request: Request, db: Database = Depends(get_db)):
    is_new = analytics.record_view(
        db, payload.portfolio_id, client_ip(request),
        user_agent=request.headers.get("user-agent"), referrer=payload.referrer,
    )
    return {"is_new_view": is_new}

@app.get("/analytics/views/{portfolio_id}")
def view_stats(portfolio_id: str, period: str = "all", identity: Identity = Depends(get_current_identity),
               db: Database = Depends(get_db)):
    return analytics.view_stats(db, identity, portfolio_id, period)
