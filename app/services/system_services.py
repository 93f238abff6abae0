from app.db.session import engine
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.logging import get_logger
from app.models.user import User
from app.models.group import Group
from app.models.group_expense import GroupExpense
from app.models.settlement import Settlement

logger = get_logger("system")

async def check_db_service():
    try:
        async with engine.connect() as conn:
            await conn.exec_driver_sql("SELECT 1")
        return {"db": True, "message": "Database is connected"}
    except (OSError, SQLAlchemyError) as e:
        logger.warning("Database health check failed: %s", e)
        return {"db": False, "error": str(e)}

async def system_health():
    return {
        "status": "ok"
    }

async def system_metrics(db: AsyncSession):
    users_q = select(func.count(User.id))
    groups_q = select(func.count(Group.id))
    expenses_q = select(func.count(GroupExpense.id))
    settlements_q = select(func.count(Settlement.id))

    return {
        "users": await db.scalar(users_q),
        "groups": await db.scalar(groups_q),
        "expenses": await db.scalar(expenses_q),
        "settlements": await db.scalar(settlements_q),
    }
