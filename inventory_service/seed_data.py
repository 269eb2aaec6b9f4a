import logging
import random
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_service.ledger import StockLedger
from inventory_service.models import Inventory, Product

logger = logging.getLogger(__name__)

# Sample product templates: (product_id, name, price)
SAMPLE_PRODUCTS = [
    ("PROD-001", "Wireless Headphones", 149.99),
    ("PROD-002", "USB-C Cable", 12.99),
    ("PROD-003", "Phone Case", 19.99),
    ("PROD-004", "Screen Protector", 9.99),
    ("PROD-005", "Power Bank", 49.99),
    ("PROD-006", "Laptop Stand", 39.99),
    ("PROD-007", "Mechanical Keyboard", 99.99),
    ("PROD-008", "Mouse Pad", 24.99),
    ("PROD-009", "USB Hub", 29.99),
    ("PROD-010", "Monitor Stand", 89.99),
    ("PROD-011", "Desk Lamp", 34.99),
    ("PROD-012", "Webcam", 59.99),
    ("PROD-013", "Microphone", 79.99),
    ("PROD-014", "HDMI Cable", 15.99),
    ("PROD-015", "External SSD 1TB", 129.99),
]


def seed_products(
    db: Session,
    low_stock_threshold: int = 10,
    location: str = "MAIN_WAREHOUSE",
    rng: Optional[random.Random] = None,
) -> int:
    """Seed sample products with their inventory rows. Returns how many were created."""
    logger.info("Seeding products...")
    rng = rng or random.Random()
    ledger = StockLedger(db)
    created = 0

    for product_id, name, price in SAMPLE_PRODUCTS:
        existing = db.execute(select(Product.id).where(Product.product_id == product_id)).first()
        if existing:
            logger.info(f"Product {product_id} already exists, skipping")
            continue

        db.add(Product(product_id=product_id, name=name, price=price, is_active=True))
        has_inventory = db.execute(select(Inventory.id).where(Inventory.product_id == product_id)).first()
        if not has_inventory:
            # Random stock between 10 and 100
            ledger.create_inventory(
                product_id,
                quantity=rng.randint(10, 100),
                low_stock_threshold=low_stock_threshold,
                location=location,
            )
        created += 1

    db.commit()
    logger.info(f"Seeded {created} of {len(SAMPLE_PRODUCTS)} products")
    return created
