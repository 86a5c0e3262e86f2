import logging
import random
import string

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import Conflict
from models.product import Product

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def generate_sku(store_id: int, rng: random.Random = random) -> str:
    """SKU-<last 4 of the store id>-<4 random base36 chars>, upper-cased."""
    store_part = str(store_id).zfill(4)[-4:]
    random_part = "".join(rng.choice(_BASE36) for _ in range(4))
    return f"SKU-{store_part}-{random_part}".upper()


def unique_sku(db: Session, store_id: int, rng: random.Random = random) -> str:
    """Generate a SKU not yet used in the store, regenerating on collision."""
    for attempt in range(1, settings.SKU_MAX_ATTEMPTS + 1):
        sku = generate_sku(store_id, rng)
        taken = db.scalar(select(Product.id).where(Product.store_id == store_id, Product.sku == sku))
        if taken is None:
            return sku
        logger.info("SKU %s already used in store %s (attempt %d)", sku, store_id, attempt)
    raise Conflict("Could not generate a unique SKU, please retry")
