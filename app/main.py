from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.api.v1.routes.expense import router as expense_router
from app.api.v1.routes.group import router as group_router
from app.api.v1.routes.settlement import router as settlement_router
from app.api.v1.routes.system import router as system_router
from app.core.config import settings
from app.core.db_check import wait_for_db
from app.core.logging import configure_logging

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    await wait_for_db()
    yield

app = FastAPI(title="Group Ledger", lifespan=lifespan)

@app.get("/")
async def root():
    return {"message": "Group Ledger is live"}

app.include_router(system_router, prefix="/api/v1/system")
app.include_router(group_router, prefix="/api/v1/groups")
app.include_router(expense_router, prefix="/api/v1/groups")
app.include_router(settlement_router, prefix="/api/v1")
