"""HTTP server for the Sijoer MCP Server with hot reloading support."""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .auth import AuthManager
from .cache import TTLCache
from .config import Settings
from .configurator import CustomizationSession
from .errors import (
    NotAuthenticatedError,
    ProductNotFoundError,
    RemoteError,
    SelectionValidationError,
    TransientRemoteError,
)
from .models import AddressInput, AuthCredentials, Registration
from .sijoer_client import SijoerClient

logger = logging.getLogger("sijoer-http-server")

# Global state
auth_manager: AuthManager
sijoer_client: SijoerClient
session: CustomizationSession


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global auth_manager, sijoer_client, session

    # Startup
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level.upper())
    logger.info("Starting Sijoer HTTP Server...")
    auth_manager = AuthManager(settings.session_file)
    sijoer_client = SijoerClient(settings, auth_manager, cache=TTLCache(settings.catalog_cache_ttl))
    session = CustomizationSession(sijoer_client)

    if settings.credentials and not auth_manager.is_authenticated():
        try:
            await sijoer_client.login(settings.credentials)
        except RemoteError as e:
            logger.error(f"Auto-login error: {e}")

    yield

    # Shutdown
    logger.info("Shutting down Sijoer HTTP Server...")
    session.close()
    await sijoer_client.close()


app = FastAPI(
    title="Sijoer MCP Server",
    description="HTTP API for customizing and ordering Sijoer contact lenses",
    version="0.1.0",
    lifespan=lifespan,
)


# Request/Response Models
class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    success: bool
    message: str


class SelectProductRequest(BaseModel):
    product_id: str


class OptionValueRequest(BaseModel):
    value: Union[int, float, str]


class AddToCartRequest(BaseModel):
    quantity: int = Field(default=1, ge=1)


class UpdateCartRequest(BaseModel):
    item_id: str
    quantity: int


class RemoveFromCartRequest(BaseModel):
    item_id: str


class CheckoutRequest(BaseModel):
    address_id: str
    payment_method: str = "alipay"


def _http_error(context: str, error: Exception) -> HTTPException:
    """Map a storefront error onto an HTTP error response."""
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, NotAuthenticatedError):
        return HTTPException(status_code=401, detail="Not authenticated")
    if isinstance(error, SelectionValidationError):
        return HTTPException(status_code=422, detail={"message": str(error), "missing": error.missing})
    if isinstance(error, ProductNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, RemoteError):
        logger.error(f"{context} error: {error}")
        return HTTPException(
            status_code=502,
            detail={
                "message": error.message,
                "code": error.code,
                "retryable": error.retryable,
                "attempts": error.attempts if isinstance(error, TransientRemoteError) else 1,
            },
        )
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    logger.error(f"{context} error: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=str(error))


def _require_auth() -> None:
    if not auth_manager.is_authenticated():
        raise HTTPException(status_code=401, detail="Not authenticated")


def _customization_view() -> dict:
    return {
        "product": session.product.model_dump(mode="json") if session.product else None,
        "options": [
            {
                **option.model_dump(mode="json"),
                "step": str(session.step_for(option.id)) if option.type == "numeric" else None,
            }
            for option in session.options
        ],
        "selections": {key: str(value) for key, value in session.get_selection_state().items()},
        "total_price": str(session.get_price_quote()),
        "missing_required": [o.id for o in session.engine.missing_required(session.options, session.state)],
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Sijoer MCP Server",
        "version": "0.1.0",
        "description": "HTTP API for customizing and ordering Sijoer contact lenses",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "auth": {
                "login": "POST /auth/login",
                "register": "POST /auth/register",
                "logout": "POST /auth/logout",
                "status": "GET /auth/status",
            },
            "products": {"list": "GET /products", "get": "GET /products/{product_id}"},
            "customization": {
                "get": "GET /customization",
                "select_product": "POST /customization/product",
                "set_option": "POST /customization/options/{option_id}",
            },
            "cart": {"get": "GET /cart", "add": "POST /cart/add", "update": "POST /cart/update", "remove": "POST /cart/remove"},
            "checkout": {
                "addresses": "GET /addresses",
                "add_address": "POST /addresses",
                "update_address": "PUT /addresses/{address_id}",
                "place_order": "POST /checkout",
            },
            "orders": {"list": "GET /orders", "details": "GET /orders/{order_id}", "tracking": "GET /tracking"},
            "profile": "GET /profile",
        },
        "authenticated": auth_manager.is_authenticated(),
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "authenticated": auth_manager.is_authenticated()}


# Authentication endpoints
@app.post("/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest):
    """Login to the store."""
    try:
        success = await sijoer_client.login(AuthCredentials(email=request.email, password=request.password))
        if success:
            return LoginResponse(success=True, message=f"Successfully logged in as {request.email}")
        return LoginResponse(success=False, message="Login failed. Check your credentials.")
    except Exception as e:
        raise _http_error("Login", e)


@app.post("/auth/register")
async def register(request: Registration):
    """Create a customer account."""
    try:
        signed_in = await sijoer_client.register(request)
        if signed_in:
            return {"success": True, "signed_in": True, "message": f"Account created for {request.email}"}
        return {
            "success": True,
            "signed_in": False,
            "message": f"Account created for {request.email}. Confirm the email, then login.",
        }
    except Exception as e:
        raise _http_error("Register", e)


@app.post("/auth/logout")
async def logout():
    """Logout from the store."""
    try:
        await sijoer_client.logout()
        return {"success": True, "message": "Successfully logged out"}
    except Exception as e:
        raise _http_error("Logout", e)


@app.get("/auth/status")
async def auth_status():
    """Get authentication status."""
    return {
        "authenticated": auth_manager.is_authenticated(),
        "email": auth_manager.session.user_email if auth_manager.is_authenticated() else None,
    }


# Product endpoints
@app.get("/products")
async def list_products():
    """List all products."""
    try:
        products = await sijoer_client.load_products()
        return {"count": len(products), "products": [p.model_dump(mode="json") for p in products]}
    except Exception as e:
        raise _http_error("List products", e)


@app.get("/products/{product_id}")
async def get_product(product_id: str):
    """Get a single product."""
    try:
        product = await sijoer_client.load_product(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
        return product.model_dump(mode="json")
    except Exception as e:
        raise _http_error("Get product", e)


# Customization endpoints
@app.get("/customization")
async def get_customization():
    """Current product, options, selections and price."""
    try:
        if session.product is None:
            await session.load()
        return _customization_view()
    except Exception as e:
        raise _http_error("Get customization", e)


@app.post("/customization/product")
async def select_product(request: SelectProductRequest):
    """Start customizing a product."""
    try:
        product = await session.select_product(request.product_id)
        if product is None:
            raise HTTPException(status_code=409, detail="Superseded by a newer product selection")
        return _customization_view()
    except Exception as e:
        raise _http_error("Select product", e)


@app.post("/customization/options/{option_id}")
async def set_option(option_id: str, request: OptionValueRequest):
    """Set the value of one option."""
    if session.product is None:
        raise HTTPException(status_code=409, detail="No product selected")
    if session.option(option_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown option: {option_id}")
    session.set_value(option_id, request.value)
    return _customization_view()


# Cart endpoints
@app.get("/cart")
async def get_cart():
    """Get current shopping cart."""
    try:
        _require_auth()
        cart = await sijoer_client.get_cart()
        return {
            **cart.model_dump(mode="json"),
            "summary": sijoer_client.order_summary(cart.items).model_dump(mode="json"),
        }
    except Exception as e:
        raise _http_error("Get cart", e)


@app.post("/cart/add")
async def add_to_cart(request: AddToCartRequest):
    """Add the current customization to the cart."""
    try:
        _require_auth()
        if session.product is None:
            raise HTTPException(status_code=409, detail="No product selected")
        payload = await session.add_to_cart(quantity=request.quantity)
        return {
            "success": True,
            "message": f"Added product to cart (quantity: {request.quantity})",
            "payload": payload.model_dump(mode="json"),
        }
    except Exception as e:
        raise _http_error("Add to cart", e)


@app.post("/cart/update")
async def update_cart(request: UpdateCartRequest):
    """Update item quantity in cart."""
    try:
        _require_auth()
        await sijoer_client.update_cart_item_quantity(request.item_id, request.quantity)
        return {"success": True, "message": f"Updated item {request.item_id} to quantity {request.quantity}"}
    except Exception as e:
        raise _http_error("Update cart", e)


@app.post("/cart/remove")
async def remove_from_cart(request: RemoveFromCartRequest):
    """Remove an item from the cart."""
    try:
        _require_auth()
        await sijoer_client.remove_cart_item(request.item_id)
        return {"success": True, "message": f"Removed item {request.item_id} from cart"}
    except Exception as e:
        raise _http_error("Remove from cart", e)


# Checkout endpoints
@app.get("/addresses")
async def get_addresses():
    """List saved shipping addresses."""
    try:
        _require_auth()
        addresses = await sijoer_client.get_addresses()
        return {"count": len(addresses), "addresses": [a.model_dump(mode="json") for a in addresses]}
    except Exception as e:
        raise _http_error("Get addresses", e)


@app.post("/addresses")
async def add_address(request: AddressInput):
    """Add a shipping address."""
    try:
        _require_auth()
        address = await sijoer_client.save_address(request)
        return address.model_dump(mode="json")
    except Exception as e:
        raise _http_error("Add address", e)


@app.put("/addresses/{address_id}")
async def update_address(address_id: str, request: AddressInput):
    """Update a saved shipping address."""
    try:
        _require_auth()
        address = await sijoer_client.save_address(request, address_id=address_id)
        return address.model_dump(mode="json")
    except Exception as e:
        raise _http_error("Update address", e)


@app.post("/checkout")
async def checkout(request: CheckoutRequest):
    """Place an order for the cart contents."""
    try:
        _require_auth()
        order = await sijoer_client.create_order(request.address_id, payment_method=request.payment_method)
        return order.model_dump(mode="json")
    except Exception as e:
        raise _http_error("Checkout", e)


# Order endpoints
@app.get("/orders")
async def get_orders():
    """Get user's orders."""
    try:
        _require_auth()
        orders = await sijoer_client.get_orders()
        return {"count": len(orders), "orders": [o.model_dump(mode="json") for o in orders]}
    except Exception as e:
        raise _http_error("Get orders", e)


@app.get("/orders/{order_id}")
async def get_order_details(order_id: str):
    """Get detailed information for a specific order."""
    try:
        _require_auth()
        order = await sijoer_client.get_order_details(order_id)
        if not order:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        return order.model_dump(mode="json")
    except Exception as e:
        raise _http_error("Get order details", e)


@app.get("/tracking")
async def track_order(order_id: Optional[str] = None, order_number: Optional[str] = None):
    """Shipment status of an order, by order ID or order number."""
    try:
        tracking = await sijoer_client.track_order(order_id=order_id, order_number=order_number)
        if tracking is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return {**tracking.model_dump(mode="json"), "has_shipment": tracking.has_shipment}
    except Exception as e:
        raise _http_error("Track order", e)


@app.get("/profile")
async def get_profile():
    """Get the customer profile."""
    try:
        _require_auth()
        profile = await sijoer_client.get_profile()
        return profile.model_dump(mode="json")
    except Exception as e:
        raise _http_error("Get profile", e)


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str = "info"):
    """
    Run the HTTP server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        reload: Enable hot reloading (default: False)
        log_level: uvicorn log level
    """
    import uvicorn

    logger.info(f"Starting server on {host}:{port} (reload={'enabled' if reload else 'disabled'})")

    if reload:
        # Hot reloading - watches for file changes
        uvicorn.run(
            "sijoer_server.http_server:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["sijoer_server"],
            log_level=log_level,
        )
    else:
        uvicorn.run(app, host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    # Enable hot reloading by default when running directly
    run_http_server(reload=True)
