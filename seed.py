"""Load a sample catalog into the configured database.

    python seed.py            # only when the catalog is empty
    python seed.py --force    # wipe products first
"""

import argparse
import logging
import sys

import config
from database import Database, connect
from schemas import Product, Ratings

logger = logging.getLogger(__name__)

DEFAULT_STOCK = 50

# (name, sale price, list price, rating, category, image, description)
SAMPLE_PRODUCTS = [
    ("CocoPrime Cocopeat Block 5kg", 79, 99, 4.8, "Home", "img/5kg/5.jpeg",
     "High-quality cocopeat blocks ideal for supporting indoor and outdoor plants."),
    ("CocoPrime Cocopeat Block 1kg", 499, 599, 4.6, "Home", "img/1kg/1.jpeg",
     "Premium quality coco peat block for gardening and soil enrichment."),
    ("CocoPrime Cocopeat Powder 5kg", 79, 99, 4.7, "Home", "img/cocopowder5kg/p.jpeg",
     "Eco-friendly cocopeat powder perfect for all plants and soil enhancement."),
    ("CocoPrime Coir Stick 1ft (Set of 1)", 79, 99, 4.7, "Home", "img/coirstick/coir3.jpeg",
     "Strong and eco-friendly coir stick for plant support."),
    ("CocoPrime Coir Stick 2ft (Set of 4)", 316, 396, 4.7, "Home", "img/coirstick/coir4.jpeg",
     "Set of 4 coir sticks for better plant support."),
    ("CocoPrime Coir Stick 5ft (Set of 5)", 395, 495, 4.7, "Home", "img/coirstick/coir4.jpeg",
     "Set of 5 coir sticks for better plant support."),
]


def seed_products(db: Database, force: bool = False) -> int:
    count = db["product"].count_documents({})
    if count > 0 and not force:
        logger.info("Products already exist (%d); nothing inserted", count)
        return 0
    if force:
        db["product"].delete_many({})

    inserted = 0
    for name, sale_price, list_price, rating, category, image, description in SAMPLE_PRODUCTS:
        product = Product(
            name=name,
            description=description,
            price=list_price,
            discount_price=sale_price,
            category=category,
            stock=DEFAULT_STOCK,
            image_url=image,
            images=[image],
            ratings=Ratings(average=rating, count=0),
        )
        db.create_document("product", product)
        inserted += 1
    logger.info("Inserted %d products", inserted)
    return inserted


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed the product catalog")
    parser.add_argument("--force", action="store_true", help="delete existing products first")
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    if not config.DATABASE_URL:
        logger.error("DATABASE_URL is not set")
        return 1
    db = connect(config.DATABASE_URL, config.DATABASE_NAME)
    seed_products(db, force=args.force)
    return 0


if __name__ == "__main__":
    sys.exit(main())
