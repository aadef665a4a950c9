"""Load demo accounts and produce into an empty database.

    python -m agrimarket.seed
"""

from decimal import Decimal

import structlog
from sqlmodel import Session, select

from agrimarket.core.logging import configure_logging
from agrimarket.db.session import engine, create_db_and_tables
from agrimarket.models.product import Product
from agrimarket.models.user import User, UserRole, FarmerProfile
from agrimarket.services.auth import pwd_context

logger = structlog.get_logger(__name__)

DEMO_PASSWORD = "password123"

def seed(session: Session) -> bool:
    # Check if users already exist to avoid duplicates
    if session.exec(select(User)).first():
        logger.info("seed_skipped", reason="database not empty")
        return False

    password_hash = pwd_context.hash(DEMO_PASSWORD)
    admin = User(name="Platform Admin", email="admin@agrimarket.local", password_hash=password_hash, role=UserRole.ADMIN)
    ravi = User(name="Ravi Kumar", email="ravi@farm.local", password_hash=password_hash, role=UserRole.FARMER,
                phone="9800000001", address="Plot 12, Green Valley, Nashik")
    meera = User(name="Meera Patil", email="meera@farm.local", password_hash=password_hash, role=UserRole.FARMER,
                 phone="9800000002", address="Survey 44, Riverside Farms, Pune")
    buyer = User(name="Anita Sharma", email="anita@example.com", password_hash=password_hash, role=UserRole.BUYER,
                 phone="9800000003", address="Flat 5B, Lake View Apartments, Mumbai 400076")
    session.add_all([admin, ravi, meera, buyer])
    session.flush()

    session.add_all([
        FarmerProfile(farmer_id=ravi.id, farm_name="Green Valley Farm", farm_size=12.5, farming_experience=15,
                      certifications=["NPOP Organic"], farming_methods=["drip irrigation", "composting"]),
        FarmerProfile(farmer_id=meera.id, farm_name="Riverside Farms", farm_size=6.0, farming_experience=8,
                      farming_methods=["crop rotation"]),
    ])

    products = [
        Product(farmer_id=ravi.id, title="Alphonso Mangoes", category="fruits", unit="dozen",
                price=Decimal("649.00"), stock=40, is_organic=True,
                description="Hand-picked Ratnagiri Alphonso, naturally ripened."),
        Product(farmer_id=ravi.id, title="Vine Tomatoes", category="vegetables", unit="kg",
                price=Decimal("42.50"), stock=120, description="Firm red tomatoes harvested this week."),
        Product(farmer_id=meera.id, title="Basmati Rice", category="grains", unit="kg",
                price=Decimal("118.00"), stock=300, description="Aged long-grain basmati."),
        Product(farmer_id=meera.id, title="Fresh Spinach", category="vegetables", unit="bunch",
                price=Decimal("25.00"), stock=8, is_organic=True, description="Tender leaves, pesticide free."),
    ]
    session.add_all(products)
    session.commit()
    logger.info("seed_completed", users=4, products=len(products))
    return True

def main():
    configure_logging()
    create_db_and_tables()
    with Session(engine) as session:
        seed(session)

if __name__ == "__main__":
    main()
