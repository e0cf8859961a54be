import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise
from tortoise.exceptions import BaseORMException

from app import settings
from app.exceptions import store_error_handler
from app.routers import admin, booking, payments

logger.remove()
logger.add(sys.stderr, level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules={"models": ["app.models"]},
        generate_schemas=True,
    ):
        yield


app = FastAPI(title="Studio Bookings API", lifespan=lifespan)
app.add_exception_handler(BaseORMException, store_error_handler)

app.include_router(booking.router)
app.include_router(booking.service_router)
app.include_router(payments.router)
app.include_router(admin.router)
