"""Stateful customization session for the active product."""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Optional

from .customization import CustomizationEngine
from .errors import ProductNotFoundError, SijoerError
from .models import CustomizationOption, Product, SelectionState, SubmissionPayload
from .retry import InFlightRequests
from .sijoer_client import SijoerClient

logger = logging.getLogger(__name__)

SELECT_REQUEST = "product-selection"


class CustomizationSession:
    """
    Holds the active product, its option catalog and the customer's selections.

    Selecting a product supersedes any selection still in flight, including
    its product lookup, so a slow response can never overwrite the state of
    the product selected after it.
    """

    def __init__(self, client: SijoerClient, engine: Optional[CustomizationEngine] = None) -> None:
        self.client = client
        self.engine = engine or CustomizationEngine()
        self.products: list[Product] = []
        self.product: Optional[Product] = None
        self.options: list[CustomizationOption] = []
        self.state: SelectionState = {}
        self._requests = InFlightRequests()

    async def load(self, initial_product_id: Optional[str] = None) -> Optional[Product]:
        """Load the catalog and select ``initial_product_id`` or the first product."""
        self.products = await self.client.load_products()
        if not self.products:
            logger.warning("Catalog is empty")
            return None

        product = next((p for p in self.products if p.id == initial_product_id), self.products[0])
        return await self.select_product(product.id)

    async def select_product(self, product_id: str) -> Optional[Product]:
        """
        Make ``product_id`` the active product and seed its selections.

        The product lookup and the option load run as one request, so a newer
        selection supersedes this one at any point before it completes.

        Returns:
            The product, or None if another selection superseded this one

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        task = self._requests.start(SELECT_REQUEST, self._select(product_id))
        await asyncio.wait({task})
        if task.cancelled():
            logger.info(f"Selection of product {product_id} was superseded")
            return None
        return task.result()

    async def _select(self, product_id: str) -> Optional[Product]:
        product = next((p for p in self.products if p.id == product_id), None)
        if product is None:
            product = await self.client.load_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        options = await self.client.load_customization_options(product.id)
        if not self._requests.is_current(SELECT_REQUEST):
            logger.info(f"Discarding stale options for product {product.id}")
            return None

        self.product = product
        self.options = options
        self.state = self.engine.initialize(product, options)
        logger.info(f"Customizing {product.name} with {len(options)} option(s)")
        return product

    def set_value(self, option_id: str, value: Any) -> SelectionState:
        """Set one option value; unknown option ids are ignored."""
        self.state = self.engine.set_value(self.state, self.options, option_id, value)
        return self.state

    def get_selection_state(self) -> SelectionState:
        return self.state

    def get_price_quote(self) -> Decimal:
        return self.engine.compute_total(self.product, self.options, self.state)

    def step_for(self, option_id: str) -> Optional[Decimal]:
        """Increment step of a numeric option at its current value."""
        option = self.option(option_id)
        if option is None or option.type != "numeric":
            return None
        return self.engine.resolve_step(option, self.state.get(option_id))

    def option(self, option_id: str) -> Optional[CustomizationOption]:
        return next((o for o in self.options if o.id == option_id), None)

    def reset(self) -> SelectionState:
        """Restore every option to its default."""
        self.state = self.engine.initialize(self.product, self.options)
        return self.state

    async def add_to_cart(self, quantity: int = 1) -> SubmissionPayload:
        """
        Submit the current selections to the cart and reset them.

        Raises:
            SelectionValidationError: If a required option is unselected
            ValueError: If quantity is below one
        """
        if self.product is None:
            raise SijoerError("No product selected")
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")

        product = self.product
        payload = self.engine.build_submission(product, self.options, self.state)
        await self.client.add_to_cart(payload, quantity=quantity)

        if self.product is product:
            self.reset()
        return payload

    def close(self) -> None:
        self._requests.cancel_all()
