"""Shared fixtures for sijoer_server tests."""

from decimal import Decimal

import pytest

from sijoer_server.models import CustomizationOption, OptionChoice, Product


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real SIJOER_* settings out of tests."""
    for var in ("SIJOER_ACCESS_TOKEN", "SIJOER_REFRESH_TOKEN", "SIJOER_USER_ID", "SIJOER_EMAIL", "SIJOER_PASSWORD"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def product():
    return Product(id="p1", name="Daily Clear", base_price=Decimal("100"))


@pytest.fixture
def options():
    return [
        CustomizationOption(
            id="color",
            name="Color",
            type="select",
            options=[OptionChoice(value="blue", label="Blue", price_adjustment=Decimal("20"))],
            default_value="blue",
            order=1,
        ),
        CustomizationOption(
            id="power",
            name="Lens power",
            type="numeric",
            min=Decimal("0"),
            max=Decimal("1500"),
            step=Decimal("25"),
            order=2,
            quantization_profile="lens_power",
        ),
    ]


class FakeClient:
    """In-memory stand-in for SijoerClient with optional per-product gates."""

    def __init__(self, products, options_by_product):
        self.products = products
        self.options_by_product = options_by_product
        self.gates = {}
        self.product_gates = {}
        self.added = []

    async def load_products(self):
        return list(self.products)

    async def load_product(self, product_id):
        gate = self.product_gates.get(product_id)
        if gate is not None:
            await gate.wait()
        return next((p for p in self.products if p.id == product_id), None)

    async def load_customization_options(self, product_id=None):
        gate = self.gates.get(product_id)
        if gate is not None:
            await gate.wait()
        return list(self.options_by_product.get(product_id, []))

    async def add_to_cart(self, payload, quantity=1):
        self.added.append((payload, quantity))
        return True


@pytest.fixture
def second_product():
    return Product(id="p2", name="Monthly Tint", base_price=Decimal("60"))


@pytest.fixture
def fake_client(product, second_product, options):
    """Catalog of two products; the second has one required tint option."""
    tint = CustomizationOption(
        id="tint", name="Tint", type="color", required=True,
        options=[OptionChoice(value="grey", label="Grey", price_adjustment=Decimal("5"))],
    )
    return FakeClient([product, second_product], {"p1": options, "p2": [tint]})
