"""
Product catalog: the single source of truth for prices.

The catalog is small and fixed, so it is kept in code rather than the
database. Every price the checkout charges comes from here; prices sent by
clients are only compared against it.
"""
from dataclasses import dataclass, asdict

from domain.errors import NotFoundError

_POD_IMAGE = "/pod_image.jpg"

_INGREDIENTS = (
    "Sodium carbonate, essential oils (lemon, eucalyptus), natural surfactants, "
    "enzymes, fabric softening agents"
)

_USAGE = (
    "Drop one pod into your washing machine drum before adding clothes. "
    "For heavily soiled loads, use two pods."
)

_CORE_FEATURES = (
    "5-in-1 cleaning formula",
    "Powerful Stain Removal + Soften the Clothes + Long Lasting Fragrance",
    "Colour Protection + Dust Removal",
)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    original_price: float
    discount: int          # percent off original_price
    quantity: str          # pack size label, e.g. "30 Pods"
    boxes: int             # shipping unit
    shipping: float        # standalone shipping fee for this pack
    description: str
    features: tuple[str, ...]
    image: str = _POD_IMAGE
    ingredients: str = _INGREDIENTS
    usage: str = _USAGE

    def to_dict(self) -> dict:
        data = asdict(self)
        data["originalPrice"] = data.pop("original_price")
        data["features"] = list(self.features)
        return data


PRODUCTS: tuple[Product, ...] = (
    Product(
        id="single-box",
        name="5-in-1 Laundry Pod",
        price=450.0,
        original_price=750.0,
        discount=40,
        quantity="30 Pods",
        boxes=1,
        shipping=99.0,
        description=(
            "Perfect starter pack with 30 premium 5-in-1 laundry pods for a "
            "months worth of fresh, clean laundry."
        ),
        features=(
            "30 premium laundry pods",
            *_CORE_FEATURES,
            "Works in cold and hot water",
            "Eco-friendly packaging",
        ),
    ),
    Product(
        id="combo-2box",
        name="5-in-1 Laundry Pod - 2 Box Combo",
        price=900.0,
        original_price=1500.0,
        discount=40,
        quantity="60 Pods",
        boxes=2,
        shipping=49.0,
        description=(
            "Great value combo pack with 60 pods. Perfect for families who want "
            "to stock up and save on shipping."
        ),
        features=(
            "60 premium laundry pods (2 boxes)",
            *_CORE_FEATURES,
            "Works in cold & hot water",
            "Reduced shipping cost",
            "2 months supply",
        ),
    ),
    Product(
        id="combo-3box",
        name="5-in-1 Laundry Pod - 3 Box Combo",
        price=1350.0,
        original_price=2250.0,
        discount=40,
        quantity="90 Pods",
        boxes=3,
        shipping=0.0,
        description=(
            "Best value family pack with 90 pods and FREE shipping. Perfect for "
            "large families or bulk buyers."
        ),
        features=(
            "90 premium laundry pods (3 boxes)",
            *_CORE_FEATURES,
            "Works in cold & hot water",
            "FREE shipping",
            "3 months supply",
            "Best value for money",
        ),
    ),
)

_BY_ID = {p.id: p for p in PRODUCTS}


def get_all_products() -> list[Product]:
    return list(PRODUCTS)


def get_product(product_id: str) -> Product | None:
    return _BY_ID.get((product_id or "").strip())


def get_product_price(product_id: str) -> float:
    product = get_product(product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product.price
