import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from app.db import engine, Base
from app.errors import CheckoutError

from app.models.clubready_config import ClubReadyConfig
from app.models.customer import Customer
from app.models.package import Package
from app.models.payment_log import PaymentLog
from app.models.transaction import Transaction

from app.routes.clubready import router as clubready_router
from app.routes.transactions import router as transactions_router

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Membership Checkout")

# ─── CORS ─────────────────────────────────────────────────────────
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
}


@app.middleware("http")
async def cors(request: Request, call_next):
    # preflight on any path: 200, headers only
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)

    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


# ─── Errors ───────────────────────────────────────────────────────
@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    log = logger.info if exc.status_code < 500 else logger.warning
    log(
        "request failed",
        extra={"path": request.url.path, "error_type": type(exc).__name__, "status_code": exc.status_code},
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []) if loc != "body")
    message = first_error.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"Invalid field '{field}': {message}" if field else message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"}, headers=CORS_HEADERS)


@app.on_event("startup")
def startup():
    Base.metadata.create_all(bind=engine)


app.include_router(clubready_router)
app.include_router(transactions_router)


@app.get("/")
def read_root():
    return {"message": "Membership Checkout is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8001)
