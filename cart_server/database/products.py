"""In-memory product catalog"""

from typing import Iterable, Optional
from ..models.product import Product, ProductCategory

# Seed catalog; every ProductDatabase starts from a copy of it
CATALOG: list[Product] = [
    Product(
        id="prod-001",
        name="Sony WH-1000XM5 Wireless Headphones",
        description="Noise cancelling over-ear headphones with 30-hour battery life.",
        price=349.99,
        category=ProductCategory.ELECTRONICS,
        sku="SONY-WH1000XM5-BLK",
        image_url="/static/images/sony-headphones.jpg",
        stock=50,
    ),
    Product(
        id="prod-002",
        name="Apple AirPods Pro (2nd Gen)",
        description="In-ear earbuds with active noise cancellation.",
        price=249.00,
        category=ProductCategory.ELECTRONICS,
        sku="APPLE-APP2-WHT",
        image_url="/static/images/airpods-pro.jpg",
        stock=100,
        reserved=10,
    ),
    Product(
        id="prod-004",
        name="Patagonia Better Sweater Jacket",
        description="Fleece jacket made with recycled polyester.",
        price=139.00,
        category=ProductCategory.CLOTHING,
        sku="PATA-BSJKT-NVY-M",
        image_url="/static/images/patagonia-sweater.jpg",
        stock=75,
    ),
    Product(
        id="prod-006",
        name="Dyson V15 Detect Vacuum",
        description="Cordless vacuum with laser dust detection.",
        price=749.99,
        category=ProductCategory.HOME,
        sku="DYSON-V15DET-GLD",
        image_url="/static/images/dyson-v15.jpg",
        stock=3,
        reserved=1,
    ),
    Product(
        id="prod-008",
        name="Yeti Tundra 45 Cooler",
        description="Rotomolded cooler with PermaFrost insulation.",
        price=325.00,
        category=ProductCategory.SPORTS,
        sku="YETI-T45-WHT",
        image_url="/static/images/yeti-cooler.jpg",
        stock=35,
        discontinued=True,
    ),
    Product(
        id="prod-009",
        name="Garmin Forerunner 965",
        description="GPS running watch with AMOLED display.",
        price=599.99,
        category=ProductCategory.SPORTS,
        sku="GARM-FR965-BLK",
        image_url="/static/images/garmin-watch.jpg",
        stock=0,
        available=False,
    ),
    Product(
        id="prod-010",
        name="Atomic Habits by James Clear",
        description="An Easy & Proven Way to Build Good Habits & Break Bad Ones. Hardcover.",
        price=24.99,
        category=ProductCategory.BOOKS,
        sku="BOOK-ATOMIC-HC",
        image_url="/static/images/atomic-habits.jpg",
        stock=200,
    ),
]


class ProductDatabase:
    """In-memory product database"""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Restore the seed catalog"""
        self.products: dict[str, Product] = {p.id: p.model_copy() for p in CATALOG}

    def get_product(self, product_id: str) -> Optional[Product]:
        """Get a product by ID"""
        return self.products.get(product_id)

    def get_products(self, product_ids: Optional[Iterable[str]] = None) -> list[Product]:
        """Get the listed products (unknown ids are skipped), or all of them"""
        if product_ids is None:
            return list(self.products.values())
        return [self.products[pid] for pid in product_ids if pid in self.products]

    def update_product(self, product_id: str, **changes) -> Optional[Product]:
        """Change catalog fields such as price or availability"""
        product = self.products.get(product_id)
        if not product:
            return None
        updated = product.model_validate({**product.model_dump(), **changes})
        self.products[product_id] = updated
        return updated


# Singleton instance
product_db = ProductDatabase()
