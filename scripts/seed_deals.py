#!/usr/bin/env python3
"""Seed the database with sample categories, businesses and deals."""
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from dealspot import create_app
from dealspot.auth import create_admin
from dealspot.extensions import db
from dealspot.models import AdminUser, Business, Category, Deal, utc_now

CATEGORIES = [
    {"name": "Restaurants", "name_nl": "Restaurants", "icon": "utensils"},
    {"name": "Wellness", "name_nl": "Wellness", "icon": "spa"},
    {"name": "Hotels", "name_nl": "Hotels", "icon": "bed"},
    {"name": "Activities", "name_nl": "Activiteiten", "icon": "camera"},
    {"name": "Fitness", "name_nl": "Fitness", "icon": "dumbbell"},
    {"name": "Shopping", "name_nl": "Winkelen", "icon": "shopping"},
]

BUSINESSES = [
    {
        "name": "Restaurant De Gouden Eeuw",
        "description": "Authentiek Nederlands restaurant met moderne twist",
        "address": "Prinsengracht 123",
        "phone": "020-1234567",
        "website": "https://degoudeneuw.nl",
        "rating": Decimal("4.5"),
        "review_count": 127,
    },
    {
        "name": "Zen Wellness Spa",
        "description": "Ontspanning en welzijn in het hart van de stad",
        "address": "Vondelpark 45",
        "phone": "020-2345678",
        "website": "https://zenwellness.nl",
        "rating": Decimal("4.8"),
        "review_count": 89,
    },
    {
        "name": "Hotel Boutique Amsterdam",
        "description": "Luxe boutique hotel met uitzicht op de grachten",
        "address": "Herengracht 78",
        "phone": "020-3456789",
        "website": "https://boutiqueamsterdam.nl",
        "rating": Decimal("4.6"),
        "review_count": 203,
    },
    {
        "name": "Fitness First Central",
        "description": "Moderne sportschool met alle faciliteiten",
        "address": "Leidseplein 12",
        "phone": "020-4567890",
        "rating": Decimal("4.3"),
        "review_count": 156,
    },
]

# (business index, category name, title, original, discounted, featured, stock, days valid)
DEALS = [
    (0, "Restaurants", "3-gangen diner met wijn", "65.00", "39.00", True, 50, 30),
    (1, "Wellness", "90 minuten ontspanningspakket", "120.00", "75.00", True, 25, 45),
    (2, "Hotels", "Romantisch weekend arrangement", "350.00", "249.00", True, 15, 60),
    (3, "Fitness", "3 maanden sportschool lidmaatschap", "180.00", "99.00", False, 100, 14),
]


def seed_deals(admin_username="admin", admin_password="changeme123"):
    """Insert sample data; rows that already exist are left untouched."""
    app = create_app()

    with app.app_context():
        db.create_all()

        if AdminUser.query.filter_by(username=admin_username).first() is None:
            create_admin(admin_username, admin_password, "DealSpot Admin")
            print(f"✓ Added admin account '{admin_username}'")

        categories = {}
        for data in CATEGORIES:
            category = Category.query.filter_by(name=data["name"]).first()
            if category is None:
                category = Category(**data)
                db.session.add(category)
            categories[data["name"]] = category

        businesses = []
        for data in BUSINESSES:
            business = Business.query.filter_by(name=data["name"]).first()
            if business is None:
                business = Business(city="Amsterdam", **data)
                db.session.add(business)
            businesses.append(business)

        db.session.flush()

        now = utc_now()
        added = 0
        for index, category_name, title, original, discounted, featured, stock, days in DEALS:
            business = businesses[index]
            if Deal.query.filter_by(business_id=business.id, title=title).first():
                print(f"⏭️  {business.name} already has '{title}'. Skipping...")
                continue

            original_price = Decimal(original)
            discounted_price = Decimal(discounted)
            db.session.add(Deal(
                business_id=business.id,
                category_id=categories[category_name].id,
                title=title,
                description=f"{title} bij {business.name}",
                original_price=original_price,
                discounted_price=discounted_price,
                discount_percentage=round((original_price - discounted_price) / original_price * 100),
                is_featured=featured,
                available_count=stock,
                expires_at=now + timedelta(days=days),
            ))
            added += 1
            print(f"  ✓ Added: {title} (€{discounted_price:.2f})")

        db.session.commit()
        print(f"\n✅ Seeding complete, {added} new deals")
        print(f"📊 Total deals in database: {Deal.query.count()}")


if __name__ == "__main__":
    seed_deals()
