# cafepos/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cafepos import __version__
from cafepos.middleware import RequestIdMiddleware
from cafepos.db import Base, engine
from cafepos.errors import PosError
from cafepos.util.logging import get_logger, setup_logging

from cafepos.routers import auth, admin, branches, tables, orders

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("Schema ready", version=__version__)
    yield


app = FastAPI(title="Cafe POS API", version=__version__, lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError):
    level = logger.error if exc.status_code >= 500 else logger.info
    level("Request failed", path=request.url.path, code=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(branches.router)
app.include_router(tables.router)
app.include_router(orders.router)


@app.get("/healthz")
def healthz():
    return {"ok": True}
