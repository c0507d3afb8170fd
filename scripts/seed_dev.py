import asyncio
from datetime import timedelta

from luckydraw.auth import ADMIN
from luckydraw.db.engine import get_sessionmaker, make_engine
from luckydraw.db.utils import utcnow
from luckydraw.models import Base
from luckydraw.models.utils import generate_inventory, plan_inventory
from luckydraw.workflows import grant_ticket, stock_tally

# Benefit text -> number of codes; the rank is read from the text label.
INVENTORY = {
    "SS賞 お食事券 10,000円分": 1,
    "S賞 お食事券 3,000円分": 15,
    "A賞 ドリンク1杯無料": 120,
    "B賞 トッピング1品無料": 864,
}

SAMPLE_PHONES = ["09011112222", "08033334444", "07055556666"]


async def _seed() -> None:
    """Seed the development database with sample inventory and tickets."""
    engine = make_engine()

    # Drop and recreate all tables.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    Session = get_sessionmaker(engine)
    expires_at = utcnow() + timedelta(days=90)

    rank_counts, benefit_texts = plan_inventory(INVENTORY)
    async with Session() as session:
        await generate_inventory(
            session,
            rank_counts=rank_counts,
            benefit_texts=benefit_texts,
        )
        await session.commit()

        for phone in SAMPLE_PHONES:
            for _ in range(2):
                await grant_ticket(session, ADMIN, phone, expires_at=expires_at)

        tally = await stock_tally(session, ADMIN)

    await engine.dispose()
    print("Seeded stock:", tally.to_json())
    print("Sample phones with 2 tickets each:", ", ".join(SAMPLE_PHONES))


def main() -> None:
    asyncio.run(_seed())


if __name__ == "__main__":
    main()
