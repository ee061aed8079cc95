import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import configure_logging, get_settings
from database import DuplicateEmailError, MarketStore, get_store
from schemas import (
    USER_TYPES,
    AuthResponse,
    DashboardStats,
    LoginRequest,
    MessageResponse,
    OrderStatusUpdate,
    ProductIn,
    SignupRequest,
    TokenClaims,
    UserPublic,
)

settings = get_settings()
configure_logging(settings.log_level, settings.log_json)
logger = structlog.get_logger(__name__)

# App and CORS
app = FastAPI(title="Farm Marketplace API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.store = MarketStore()

# Auth setup
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
INVALID_CREDENTIALS = "Invalid email or password"


# Error handlers

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("invalid_request_body", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"message": "Invalid request body"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", method=request.method, path=request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return response


# Helpers

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenClaims:
    """Verify signature and expiry, then parse the claims; raises 403 on any failure."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm], options={"require_exp": True})
        return TokenClaims.model_validate(payload)
    except (JWTError, ValidationError):
        raise HTTPException(status_code=403, detail="Invalid token")


def issue_token(user: Dict[str, Any]) -> str:
    return create_access_token({"userId": user["id"], "email": user["email"], "userType": user["userType"]})


def sanitize_user(user: Dict[str, Any]) -> UserPublic:
    d = {k: v for k, v in user.items() if k != "password"}
    return UserPublic.model_validate(d)


def parse_id(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        return None


def is_blank(value: Any) -> bool:
    """Missing, null, empty string, zero, NaN or false."""
    if value is None or value == "":
        return True
    return isinstance(value, (int, float)) and (not value or value != value)


async def get_current_claims(token: Optional[str] = Depends(oauth2_scheme)) -> TokenClaims:
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")
    return decode_access_token(token)


# Auth Routes
@app.post("/api/auth/signup", response_model=AuthResponse, status_code=201)
def signup(payload: SignupRequest, store: MarketStore = Depends(get_store)):
    fields = (payload.name, payload.email, payload.password, payload.user_type, payload.additional_info)
    if any(is_blank(f) for f in fields):
        raise HTTPException(status_code=400, detail="All fields are required")
    if not EMAIL_RE.match(payload.email):
        raise HTTPException(status_code=400, detail="Please enter a valid email address")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if payload.user_type not in USER_TYPES:
        raise HTTPException(status_code=400, detail="Invalid user type")
    if store.find_user_by_email(payload.email):
        raise HTTPException(status_code=409, detail="User with this email already exists")

    try:
        user = store.create_user(
            name=payload.name,
            email=payload.email,
            password_hash=hash_password(payload.password),
            user_type=payload.user_type,
            additional_info=payload.additional_info,
        )
    except DuplicateEmailError:
        raise HTTPException(status_code=409, detail="User with this email already exists")

    logger.info("user_signed_up", user_id=user["id"], user_type=user["userType"])
    return AuthResponse(message="Account created successfully", token=issue_token(user), user=sanitize_user(user))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, store: MarketStore = Depends(get_store)):
    if is_blank(payload.email) or is_blank(payload.password):
        raise HTTPException(status_code=400, detail="Email and password are required")
    user = store.find_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user["password"]):
        logger.info("login_failed")
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
    logger.info("user_logged_in", user_id=user["id"])
    return AuthResponse(message="Login successful", token=issue_token(user), user=sanitize_user(user))


@app.post("/api/auth/logout", response_model=MessageResponse)
def logout(claims: TokenClaims = Depends(get_current_claims)):
    # Tokens are stateless; the client discards it and it lapses at expiry.
    logger.info("user_logged_out", user_id=claims.user_id)
    return {"message": "Logged out successfully"}


@app.get("/api/user/profile", response_model=UserPublic)
def profile(claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    user = store.find_user_by_id(claims.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return sanitize_user(user)


# Farmer routes: products
@app.get("/api/farmer/products")
def list_products(claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    return store.products_for(claims.user_id)


@app.post("/api/farmer/products", status_code=201)
def create_product(payload: ProductIn, claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    product = store.add_product(claims.user_id, payload.model_dump(by_alias=True))
    logger.info("product_created", product_id=product["id"], farmer_id=claims.user_id)
    return product


@app.put("/api/farmer/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductIn,
    claims: TokenClaims = Depends(get_current_claims),
    store: MarketStore = Depends(get_store),
):
    product = store.update_product(parse_id(product_id), claims.user_id, payload.model_dump(by_alias=True))
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("product_updated", product_id=product["id"], farmer_id=claims.user_id)
    return product


@app.delete("/api/farmer/products/{product_id}", response_model=MessageResponse)
def delete_product(product_id: str, claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    if not store.delete_product(parse_id(product_id), claims.user_id):
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("product_deleted", product_id=product_id, farmer_id=claims.user_id)
    return {"message": "Product deleted successfully"}


# Farmer routes: orders and reviews
@app.get("/api/farmer/orders")
def list_orders(claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    return store.orders_for(claims.user_id)


@app.put("/api/farmer/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    store: MarketStore = Depends(get_store),
):
    # Any status string is accepted; transitions are not validated.
    order = store.update_order_status(parse_id(order_id), claims.user_id, payload.status)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("order_status_updated", order_id=order["id"], status=payload.status, farmer_id=claims.user_id)
    return order


@app.get("/api/farmer/reviews")
def list_reviews(claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    return store.reviews_for(claims.user_id)


@app.get("/api/farmer/dashboard", response_model=DashboardStats)
def farmer_dashboard(claims: TokenClaims = Depends(get_current_claims), store: MarketStore = Depends(get_store)):
    return store.dashboard_for(claims.user_id)


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Farm Marketplace API running"}


if __name__ == "__main__":
    import uvicorn
    logger.info("server_starting", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)
