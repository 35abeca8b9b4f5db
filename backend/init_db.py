"""
Database Initialization Script
Creates all referral program tables and seeds the default settings and email templates
"""

import asyncio

from app.core.database import AsyncSessionLocal, engine
from app.core.schema import metadata
from app.services.notification_service import list_email_templates
from app.services.settings_service import get_referral_settings


async def init_database():
    """Initialize database with tables and indexes"""
    print(f"Initializing {engine.url.render_as_string(hide_password=True)}")

    try:
        async with engine.begin() as conn:
            print("Creating tables...")
            await conn.run_sync(metadata.create_all)
            print("Tables created successfully")

        async with AsyncSessionLocal() as session:
            program = await get_referral_settings(session)
            templates = await list_email_templates(session)
            await session.commit()
            print(f"Referral settings ready (discount {program.discount_fraction}, cashback {program.cashback_amount})")
            print(f"Email templates ready ({len(templates)})")

        print("Database initialization completed!")

    except Exception as e:
        print(f"Error initializing database: {e}")
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
