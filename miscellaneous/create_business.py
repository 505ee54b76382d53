#!/usr/bin/env python3
"""
Create a business and print a bearer token for its staff.
"""

import asyncio
import os
import sys
from datetime import timedelta

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from experience_booking_platform.database import close_database, get_db_session, init_database
from experience_booking_platform.models.business import Business
from experience_booking_platform.utils.auth import create_access_token


async def create_business():
    """Create a business interactively."""
    print("🔧 Experience Booking Platform - Business Creation")
    print("=" * 50)

    name = input("Enter business name: ").strip()
    if not name:
        print("❌ Name is required!")
        return

    slug = input("Enter business slug: ").strip().lower()
    if not slug:
        print("❌ Slug is required!")
        return

    staff_email = input("Enter staff email (token subject): ").strip() or "staff@" + slug

    print("\n🔄 Initializing database connection...")
    await init_database()

    try:
        async with get_db_session() as db:
            existing = (await db.execute(
                select(Business).where(Business.slug == slug)
            )).scalar_one_or_none()

            if existing:
                print(f"ℹ️  Business '{slug}' already exists, issuing a token for it")
                business = existing
            else:
                business = Business(name=name, slug=slug)
                db.add(business)
                await db.flush()

            business_id = str(business.id)
            name = business.name
    finally:
        await close_database()

    token = create_access_token(
        {"sub": staff_email, "business_id": business_id},
        expires_delta=timedelta(days=30)
    )

    print("✅ Business ready!")
    print(f"   ID: {business_id}")
    print(f"   Name: {name}")
    print(f"   Slug: {slug}")
    print("\n🔑 Bearer token (valid 30 days):")
    print(token)


if __name__ == "__main__":
    asyncio.run(create_business())
