"""Dev seeding helper for stub authentication."""

import asyncio
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.auth import DEFAULT_TENANT_ID
from backend.app.db.engine import get_async_engine
from backend.app.db.models import Agent, Tenant

DEV_AGENT_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")


async def seed_dev_tenant_and_agent(session: AsyncSession) -> None:
    """Seed the dev tenant (matching stub auth defaults) and one agent.

    Idempotent - safe to run multiple times.
    """
    tenant = await session.get(Tenant, DEFAULT_TENANT_ID)
    if tenant is None:
        print(f"Creating dev tenant with id {DEFAULT_TENANT_ID}...")
        session.add(
            Tenant(
                tenant_id=DEFAULT_TENANT_ID,
                name="Dev Consultant",
                slug="dev-consultant",
                language="pt",
                persona="Você é um assistente especialista no material deste consultor.",
            )
        )
        await session.flush()
    else:
        print(f"Dev tenant already exists: {tenant.name}")

    result = await session.execute(select(Agent).where(Agent.agent_id == DEV_AGENT_ID))
    if result.scalar_one_or_none() is None:
        print(f"Creating dev agent with id {DEV_AGENT_ID}...")
        session.add(
            Agent(
                agent_id=DEV_AGENT_ID,
                tenant_id=DEFAULT_TENANT_ID,
                slug="assistente",
                name="Assistente",
                access_level=0,
            )
        )
    else:
        print("Dev agent already exists")

    await session.commit()


async def main() -> None:
    async with AsyncSession(get_async_engine(), expire_on_commit=False) as session:
        await seed_dev_tenant_and_agent(session)
    print("Dev seeding complete")


if __name__ == "__main__":
    asyncio.run(main())
