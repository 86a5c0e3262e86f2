# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User, Address  # noqa: F401
from .store import Store  # noqa: F401
from .category import Category  # noqa: F401
from .product import Product, ProductImage, ProductColor, ProductSize  # noqa: F401
