"""Sijoer storefront backend client."""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from .auth import AuthManager
from .cache import TTLCache
from .config import Settings
from .customization import sort_options
from .errors import NotAuthenticatedError, RemoteError, TransientRemoteError, classify_error
from .models import (
    AddressInput,
    AuthCredentials,
    Cart,
    CartItem,
    CustomizationOption,
    Order,
    OrderItem,
    OrderSummary,
    OrderTracking,
    Product,
    Registration,
    ShippingAddress,
    SubmissionPayload,
    UserProfile,
)
from .retry import FetchResult, retry

logger = logging.getLogger(__name__)

CART_ITEM_SELECT = (
    "id,product_id,quantity,customization,unit_price,"
    "product:products(id,name,description,base_price,image_url)"
)
TRACKING_SELECT = "id,order_number,status,tracking_number,shipping_company,created_at,updated_at"


class SijoerClient:
    """Client for the hosted storefront backend (REST tables plus token auth)."""

    def __init__(
        self,
        settings: Settings,
        auth_manager: AuthManager,
        cache: Optional[TTLCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Backend location, keys and retry policy
            auth_manager: Authentication manager instance
            cache: Catalog cache; a private one is created when omitted
            transport: httpx transport override, used by tests
            sleep: Coroutine used for backoff waits
        """
        self.settings = settings
        self.auth_manager = auth_manager
        self.cache = cache if cache is not None else TTLCache(default_ttl=settings.catalog_cache_ttl)
        self._sleep = sleep
        self.client = httpx.AsyncClient(
            base_url=settings.supabase_url,
            timeout=settings.request_timeout,
            transport=transport,
            headers={
                "apikey": settings.supabase_anon_key,
                "Accept": "application/json",
                "x-application-name": "sijoer",
            },
        )

    # ── transport ──

    def _headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.settings.supabase_anon_key}"}
        headers.update(self.auth_manager.auth_headers())
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> FetchResult:
        """Perform one request. Failures come back as the result's error, never raised."""
        try:
            response = await self.client.request(
                method, path, params=params, json=json, headers=self._headers(headers)
            )
        except httpx.HTTPError as e:
            logger.debug(f"{method} {path} transport error: {e}")
            return FetchResult(error=classify_error(None, str(e) or type(e).__name__))

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            return FetchResult(error=classify_error(response.status_code, payload))

        if not response.content:
            return FetchResult(data=None)
        try:
            return FetchResult(data=response.json())
        except ValueError:
            return FetchResult(
                error=RemoteError(
                    "Unexpected response from backend",
                    code="BAD_RESPONSE",
                    status=response.status_code,
                    retryable=False,
                )
            )

    async def _fetch(
        self,
        description: str,
        method: str,
        path: str,
        retrying: bool = True,
        **kwargs: Any,
    ) -> Any:
        """
        Run a request through retry() and return its data.

        Args:
            retrying: Set to False for writes that must not be repeated

        Raises:
            TransientRemoteError: When retries are exhausted or the error is final
            RemoteError: When a non-retried request fails
        """
        async def operation() -> FetchResult:
            return await self._request(method, path, **kwargs)

        if retrying:
            result = await retry(
                operation,
                max_attempts=self.settings.retry_attempts,
                base_delay_ms=self.settings.retry_base_delay_ms,
                max_delay_ms=self.settings.retry_max_delay_ms,
                sleep=self._sleep,
                description=description,
            )
        else:
            result = await operation()

        if result.ok:
            return result.data

        error = result.error
        if isinstance(error, RemoteError) and error.code == "AUTH_ERROR" and self.auth_manager.is_authenticated():
            logger.warning("Backend rejected the session token, clearing session")
            self.auth_manager.clear_session()
        if not retrying:
            raise error
        raise TransientRemoteError(description, error, result.attempts)

    def _require_auth(self) -> None:
        if not self.auth_manager.is_authenticated():
            raise NotAuthenticatedError()

    async def _user_id(self) -> str:
        """ID of the signed-in user, looked up once for env-provided tokens."""
        self._require_auth()
        session = self.auth_manager.session
        if session.user_id:
            return session.user_id

        user = await self._fetch("Fetch user", "GET", "/auth/v1/user")
        session.user_id = str(user["id"])
        session.user_email = session.user_email or user.get("email")
        self.auth_manager._save_session()
        return session.user_id

    # ── authentication ──

    async def login(self, credentials: AuthCredentials) -> bool:
        """
        Authenticate with email and password.

        Returns:
            True if login successful, False if the credentials were rejected
        """
        logger.info(f"Attempting login for {credentials.email}")
        try:
            data = await self._fetch(
                "Login",
                "POST",
                "/auth/v1/token",
                retrying=False,
                params={"grant_type": "password"},
                json={"email": credentials.email, "password": credentials.password},
            )
        except RemoteError as e:
            if e.status not in (400, 401, 403):
                raise
            logger.error(f"Login failed: {e.message}")
            return False

        if not data or not data.get("access_token"):
            logger.error("Login failed - no access token received")
            return False

        self.auth_manager.save_session(data, user_email=credentials.email)
        logger.info("✓ Login successful")
        return True

    async def register(self, registration: Registration) -> bool:
        """
        Create a customer account.

        Returns:
            True if the account is signed in right away, False if it still
            needs email confirmation

        Raises:
            RemoteError: If the backend rejects the sign-up
        """
        logger.info(f"Registering account for {registration.email}")
        try:
            data = await self._fetch(
                "Register",
                "POST",
                "/auth/v1/signup",
                retrying=False,
                json={
                    "email": registration.email,
                    "password": registration.password,
                    "data": {
                        "display_name": registration.display_name,
                        "phone": registration.phone,
                        "account_type": "customer",
                    },
                },
            )
        except RemoteError as e:
            if "already registered" in e.message:
                raise RemoteError(
                    "This email is already registered", code="USER_EXISTS", status=e.status, retryable=False
                ) from e
            raise

        if data and data.get("access_token"):
            self.auth_manager.save_session(data, user_email=registration.email)
            logger.info("✓ Registered and signed in")
            return True
        logger.info("✓ Registered, waiting for email confirmation")
        return False

    async def logout(self) -> None:
        """Logout and clear session."""
        if self.auth_manager.is_authenticated():
            result = await self._request("POST", "/auth/v1/logout")
            if not result.ok:
                logger.warning(f"Remote logout failed: {result.error}")
        self.auth_manager.clear_session()

    # ── catalog ──

    async def load_products(self) -> list[Product]:
        """All products ordered by name."""
        cached = self.cache.get("products")
        if cached is not None:
            return list(cached)

        rows = await self._fetch(
            "Load products", "GET", "/rest/v1/products", params={"select": "*", "order": "name.asc"}
        )
        products = [p for p in (self._parse_product(row) for row in rows or []) if p is not None]
        self.cache.set("products", products)
        logger.info(f"Loaded {len(products)} product(s)")
        return list(products)

    async def load_product(self, product_id: str) -> Optional[Product]:
        """A single product, or None if it does not exist."""
        cached = self.cache.get(f"product:{product_id}")
        if cached is not None:
            return cached

        rows = await self._fetch(
            f"Load product {product_id}",
            "GET",
            "/rest/v1/products",
            params={"select": "*", "id": f"eq.{product_id}", "limit": 1},
        )
        product = self._parse_product(rows[0]) if rows else None
        if product is not None:
            self.cache.set(f"product:{product_id}", product)
        return product

    async def load_customization_options(self, product_id: Optional[str] = None) -> list[CustomizationOption]:
        """
        Customization options ordered by their ``order`` field.

        Args:
            product_id: Restrict to options of this product plus shared ones
        """
        cache_key = f"options:{product_id or '*'}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        params = {"select": "*", "order": "order.asc"}
        if product_id:
            params["or"] = f"(product_id.is.null,product_id.eq.{product_id})"
        rows = await self._fetch("Load customization options", "GET", "/rest/v1/customization_options", params=params)

        options = []
        for row in rows or []:
            try:
                options.append(CustomizationOption.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed customization option {row.get('id')}: {e}")
        options = sort_options(options)
        self.cache.set(cache_key, options)
        return list(options)

    # ── cart ──

    async def get_or_create_cart(self) -> str:
        """ID of the user's cart, creating the cart on first use."""
        user_id = await self._user_id()
        rows = await self._fetch(
            "Find cart",
            "GET",
            "/rest/v1/carts",
            params={"select": "id", "user_id": f"eq.{user_id}", "limit": 1},
        )
        if rows:
            return str(rows[0]["id"])

        logger.info(f"Creating cart for user {user_id}")
        created = await self._fetch(
            "Create cart",
            "POST",
            "/rest/v1/carts",
            retrying=False,
            json={"user_id": user_id},
            headers={"Prefer": "return=representation"},
        )
        return str(created[0]["id"])

    async def add_to_cart(self, payload: SubmissionPayload, quantity: int = 1) -> bool:
        """
        Add a customized product to the cart.

        Raises:
            ValueError: If quantity is below one
        """
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        logger.info(f"Adding product {payload.product_id} to cart (quantity: {quantity})")
        cart_id = await self.get_or_create_cart()
        await self._fetch(
            "Add to cart",
            "POST",
            "/rest/v1/cart_items",
            json={
                "cart_id": cart_id,
                "product_id": payload.product_id,
                "quantity": quantity,
                "customization": payload.model_dump(mode="json")["selections"],
                "unit_price": str(payload.total_price),
            },
        )
        logger.info(f"✓ Product {payload.product_id} added to cart")
        return True

    async def get_cart(self) -> Cart:
        """Current cart contents with totals."""
        cart_id = await self.get_or_create_cart()
        rows = await self._fetch(
            "Load cart items",
            "GET",
            "/rest/v1/cart_items",
            params={"select": CART_ITEM_SELECT, "cart_id": f"eq.{cart_id}"},
        )

        items = []
        for row in rows or []:
            try:
                items.append(self._parse_cart_item(row))
            except (KeyError, ValueError, ArithmeticError) as e:
                logger.warning(f"Failed to parse cart item {row.get('id')}: {e}")

        return Cart(
            id=cart_id,
            items=items,
            total=sum((item.subtotal for item in items), Decimal("0")),
            item_count=sum(item.quantity for item in items),
        )

    async def update_cart_item_quantity(self, item_id: str, quantity: int) -> bool:
        """
        Set the quantity of a cart item.

        Raises:
            ValueError: If quantity is below one
        """
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        self._require_auth()
        await self._fetch(
            "Update cart item",
            "PATCH",
            "/rest/v1/cart_items",
            params={"id": f"eq.{item_id}"},
            json={"quantity": quantity},
        )
        return True

    async def remove_cart_item(self, item_id: str) -> bool:
        """Remove an item from the cart."""
        self._require_auth()
        await self._fetch(
            "Remove cart item", "DELETE", "/rest/v1/cart_items", params={"id": f"eq.{item_id}"}
        )
        return True

    # ── checkout ──

    async def get_addresses(self) -> list[ShippingAddress]:
        """Saved shipping addresses, default address first."""
        user_id = await self._user_id()
        rows = await self._fetch(
            "Load addresses",
            "GET",
            "/rest/v1/shipping_addresses",
            params={"select": "*", "user_id": f"eq.{user_id}", "order": "is_default.desc"},
        )
        return [ShippingAddress.model_validate(row) for row in rows or []]

    async def save_address(self, address: AddressInput, address_id: Optional[str] = None) -> ShippingAddress:
        """
        Add a shipping address, or update ``address_id`` when given.

        Raises:
            ValueError: If the address to update does not exist
        """
        user_id = await self._user_id()
        body = {**address.model_dump(), "user_id": user_id}
        prefer = {"Prefer": "return=representation"}

        if address_id:
            rows = await self._fetch(
                "Update address",
                "PATCH",
                "/rest/v1/shipping_addresses",
                params={"id": f"eq.{address_id}", "user_id": f"eq.{user_id}"},
                json=body,
                headers=prefer,
            )
            if not rows:
                raise ValueError(f"Address {address_id} not found")
        else:
            rows = await self._fetch(
                "Add address", "POST", "/rest/v1/shipping_addresses", retrying=False, json=body, headers=prefer
            )

        saved = ShippingAddress.model_validate({**rows[0], "id": str(rows[0]["id"])})
        logger.info(f"✓ Saved address {saved.id}")
        return saved

    def order_summary(self, items: list[CartItem]) -> OrderSummary:
        """Subtotal, shipping and total for a set of cart items."""
        subtotal = sum((item.subtotal for item in items), Decimal("0"))
        shipping = Decimal("0") if subtotal >= self.settings.free_shipping_threshold else self.settings.shipping_fee
        discount = Decimal("0")
        return OrderSummary(subtotal=subtotal, shipping=shipping, discount=discount, total=subtotal + shipping - discount)

    async def create_order(
        self,
        address_id: str,
        payment_method: str = "alipay",
        item_ids: Optional[list[str]] = None,
    ) -> Order:
        """
        Place an order for cart items and open a pending payment.

        Args:
            address_id: Shipping address ID
            payment_method: Payment method recorded with the payment
            item_ids: Cart items to order; all items when omitted

        Raises:
            ValueError: If there is nothing to order
        """
        user_id = await self._user_id()
        cart = await self.get_cart()
        items = cart.items if item_ids is None else [i for i in cart.items if i.id in item_ids]
        if not items:
            raise ValueError("Cart is empty")

        summary = self.order_summary(items)
        logger.info(f"Creating order for {len(items)} item(s), total {summary.total}")
        rows = await self._fetch(
            "Create order",
            "POST",
            "/rest/v1/orders",
            retrying=False,
            json={
                "user_id": user_id,
                "status": "pending_payment",
                "total_amount": str(summary.total),
                "shipping_address_id": address_id,
                "shipping_fee": str(summary.shipping),
            },
            headers={"Prefer": "return=representation"},
        )
        order_row = rows[0]
        order_id = str(order_row["id"])

        order_items = [
            {
                "order_id": order_id,
                "product_id": item.product.id,
                "product_name": item.product.name,
                "product_price": str(item.unit_price),
                "quantity": item.quantity,
                "customization": item.customization,
            }
            for item in items
        ]
        try:
            await self._fetch(
                "Create order items", "POST", "/rest/v1/order_items", retrying=False, json=order_items
            )
            await self._fetch(
                "Create payment record",
                "POST",
                "/rest/v1/payment_records",
                retrying=False,
                json={
                    "order_id": order_id,
                    "amount": str(summary.total),
                    "payment_method": payment_method,
                    "status": "pending",
                },
            )
        except RemoteError:
            await self._cancel_order(order_id)
            raise

        await self._fetch(
            "Clear ordered cart items",
            "DELETE",
            "/rest/v1/cart_items",
            params={"id": f"in.({','.join(item.id for item in items)})"},
        )

        order_row = {**order_row, "order_items": order_items}
        logger.info(f"✓ Order {order_id} created")
        return self._parse_order(order_row)

    async def _cancel_order(self, order_id: str) -> None:
        """Mark a partially written order cancelled; failures are only logged."""
        logger.warning(f"Cancelling incomplete order {order_id}")
        result = await self._request(
            "PATCH", "/rest/v1/orders", params={"id": f"eq.{order_id}"}, json={"status": "cancelled"}
        )
        if not result.ok:
            logger.error(f"Could not cancel incomplete order {order_id}: {result.error}")

    async def track_order(
        self, order_id: Optional[str] = None, order_number: Optional[str] = None
    ) -> Optional[OrderTracking]:
        """
        Shipment status of an order, looked up by ID or order number.

        Raises:
            ValueError: If neither order_id nor order_number is given
        """
        if order_id:
            params = {"id": f"eq.{order_id}"}
        elif order_number:
            params = {"order_number": f"eq.{order_number}"}
        else:
            raise ValueError("Give an order ID or an order number")

        rows = await self._fetch(
            "Track order",
            "GET",
            "/rest/v1/orders",
            params={"select": TRACKING_SELECT, "limit": 1, **params},
        )
        if not rows:
            return None
        row = rows[0]
        return OrderTracking.model_validate({**row, "id": str(row["id"])})

    # ── account ──

    async def get_orders(self) -> list[Order]:
        """The user's orders, newest first."""
        user_id = await self._user_id()
        rows = await self._fetch(
            "Load orders",
            "GET",
            "/rest/v1/orders",
            params={"select": "*,order_items(*)", "user_id": f"eq.{user_id}", "order": "created_at.desc"},
        )
        orders = []
        for row in rows or []:
            try:
                orders.append(self._parse_order(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Failed to parse order {row.get('id')}: {e}")
        return orders

    async def get_order_details(self, order_id: str) -> Optional[Order]:
        """A single order with its items, or None if not found."""
        user_id = await self._user_id()
        rows = await self._fetch(
            f"Load order {order_id}",
            "GET",
            "/rest/v1/orders",
            params={"select": "*,order_items(*)", "id": f"eq.{order_id}", "user_id": f"eq.{user_id}"},
        )
        return self._parse_order(rows[0]) if rows else None

    async def get_profile(self) -> UserProfile:
        """The user's profile, created on first access."""
        user_id = await self._user_id()
        rows = await self._fetch(
            "Load profile", "GET", "/rest/v1/user_profiles", params={"select": "*", "id": f"eq.{user_id}"}
        )
        if rows:
            return UserProfile.model_validate(rows[0])

        logger.info(f"Creating profile for user {user_id}")
        created = await self._fetch(
            "Create profile",
            "POST",
            "/rest/v1/user_profiles",
            retrying=False,
            json={"id": user_id, "email": self.auth_manager.session.user_email},
            headers={"Prefer": "return=representation"},
        )
        return UserProfile.model_validate(created[0])

    # ── parsing ──

    def _parse_product(self, row: dict[str, Any]) -> Optional[Product]:
        try:
            return Product.model_validate({**row, "id": str(row.get("id", ""))})
        except ValidationError as e:
            logger.warning(f"Skipping malformed product {row.get('id')}: {e}")
            return None

    def _parse_cart_item(self, row: dict[str, Any]) -> CartItem:
        product_row = row.get("product") or {"id": row["product_id"], "name": ""}
        product = Product.model_validate({**product_row, "id": str(product_row.get("id") or row["product_id"])})
        quantity = int(row.get("quantity") or 1)
        if row.get("unit_price") is not None:
            unit_price = Decimal(str(row["unit_price"]))
        else:
            unit_price = product.base_price
        return CartItem(
            id=str(row["id"]),
            product=product,
            quantity=quantity,
            customization=row.get("customization") or {},
            unit_price=unit_price,
            subtotal=unit_price * quantity,
        )

    def _parse_order(self, row: dict[str, Any]) -> Order:
        items = []
        for item in row.get("order_items") or []:
            price = Decimal(str(item.get("product_price", 0)))
            quantity = int(item.get("quantity", 1))
            items.append(
                OrderItem(
                    product_id=item.get("product_id"),
                    product_name=item.get("product_name", ""),
                    quantity=quantity,
                    price=price,
                    subtotal=price * quantity,
                    customization=item.get("customization") or {},
                )
            )
        return Order(
            id=str(row["id"]),
            status=row.get("status", "unknown"),
            created_at=row.get("created_at"),
            total=Decimal(str(row.get("total_amount", 0))),
            shipping_fee=Decimal(str(row.get("shipping_fee") or 0)),
            items=items,
            shipping_address_id=row.get("shipping_address_id"),
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
