"""MCP Server for the Sijoer contact-lens storefront."""

import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, Tool, TextContent
from pydantic import AnyUrl

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
from .models import AddressInput, AuthCredentials, Cart, Order, Registration
from .sijoer_client import SijoerClient

logger = logging.getLogger("sijoer-mcp-server")

# Initialize server
app = Server("sijoer-mcp-server")

# Global state
auth_manager: AuthManager
sijoer_client: SijoerClient
session: CustomizationSession
credentials: Optional[AuthCredentials] = None

NOT_AUTHENTICATED = (
    "Error: Not authenticated. Please login with sijoer_login or configure "
    "SIJOER_EMAIL and SIJOER_PASSWORD in the MCP settings."
)


def text(message: str) -> list[TextContent]:
    return [TextContent(type="text", text=message)]


async def ensure_authenticated() -> bool:
    """Ensure the client is authenticated, auto-login if credentials are available."""
    if auth_manager.is_authenticated():
        return True

    # Try to auto-login with stored credentials
    if credentials:
        try:
            logger.info("Auto-logging in with configured credentials...")
            if await sijoer_client.login(credentials):
                logger.info("Auto-login successful")
                return True
            logger.warning("Auto-login failed")
        except RemoteError as e:
            logger.error(f"Auto-login error: {e}")

    return False


def format_customization() -> str:
    """Describe the active product, its options and the running quote."""
    product = session.product
    if product is None:
        return "No product selected"

    state = session.get_selection_state()
    lines = [f"Customizing: {product.name} (ID: {product.id})", f"Base price: ¥{product.base_price}\n"]
    group = None
    for option in session.options:
        if option.group != group:
            group = option.group
            if group:
                lines.append(f"[{group}]")
        marker = " *" if option.required else ""
        value = state.get(option.id, "")
        lines.append(f"- {option.name}{marker} (id: {option.id}) = {value if value != '' else '(not selected)'}")
        if option.type == "numeric":
            bounds = f"{option.min if option.min is not None else '-'}..{option.max if option.max is not None else '-'}"
            unit = f" {option.unit}" if option.unit else ""
            lines.append(f"    range {bounds}{unit}, step {session.step_for(option.id)}")
            if option.price_adjustment:
                lines.append(f"    +¥{option.price_adjustment}")
        else:
            for choice in option.options:
                extra = f" (+¥{choice.price_adjustment})" if choice.price_adjustment else ""
                lines.append(f"    {choice.value}: {choice.label or choice.value}{extra}")

    lines.append(f"\nTotal: ¥{session.get_price_quote()}")
    return "\n".join(lines)


def format_cart(cart: Cart) -> str:
    if not cart.items:
        return "Your cart is empty"

    result_lines = [f"Shopping Cart ({cart.item_count} items):\n"]
    for i, item in enumerate(cart.items, 1):
        result_lines.append(f"\n{i}. {item.product.name}")
        result_lines.append(f"   Item ID: {item.id}")
        result_lines.append(f"   Unit price: ¥{item.unit_price}")
        result_lines.append(f"   Quantity: {item.quantity}")
        if item.customization:
            options = ", ".join(f"{k}={v}" for k, v in item.customization.items())
            result_lines.append(f"   Options: {options}")
        result_lines.append(f"   Subtotal: ¥{item.subtotal}")

    summary = sijoer_client.order_summary(cart.items)
    result_lines.append(f"\n{'='*50}")
    result_lines.append(f"Subtotal: ¥{summary.subtotal}")
    result_lines.append(f"Shipping: ¥{summary.shipping}")
    result_lines.append(f"Total: ¥{summary.total}")
    return "\n".join(result_lines)


def format_order(order: Order) -> list[str]:
    lines = [f"Order {order.id}", f"   Status: {order.status}"]
    if order.created_at:
        lines.append(f"   Date: {order.created_at.strftime('%Y-%m-%d %H:%M')}")
    lines.append(f"   Total: ¥{order.total} (shipping ¥{order.shipping_fee})")
    for item in order.items:
        lines.append(f"     - {item.product_name} x{item.quantity} (¥{item.subtotal})")
    return lines


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    resources = []

    # If authenticated, provide cart and orders as resources
    if auth_manager.is_authenticated():
        resources.extend(
            [
                Resource(
                    uri=AnyUrl("sijoer://cart"),
                    name="Shopping Cart",
                    mimeType="application/json",
                    description="Current shopping cart contents",
                ),
                Resource(
                    uri=AnyUrl("sijoer://orders"),
                    name="Orders",
                    mimeType="application/json",
                    description="User's orders",
                ),
            ]
        )

    return resources


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    uri_str = str(uri)

    if uri_str == "sijoer://cart":
        if not auth_manager.is_authenticated():
            return "Error: Not authenticated. Please login first."

        cart = await sijoer_client.get_cart()
        return cart.model_dump_json(indent=2)

    elif uri_str == "sijoer://orders":
        if not auth_manager.is_authenticated():
            return "Error: Not authenticated. Please login first."

        orders = await sijoer_client.get_orders()
        return json.dumps([order.model_dump(mode="json") for order in orders], indent=2)

    raise ValueError(f"Unknown resource: {uri}")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    empty = {"type": "object", "properties": {}}
    return [
        Tool(
            name="sijoer_login",
            description="Authenticate with the Sijoer store. Uses credentials from environment (SIJOER_EMAIL, SIJOER_PASSWORD) if not provided.",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string", "description": "User email address"},
                    "password": {"type": "string", "description": "User password"},
                },
            },
        ),
        Tool(
            name="sijoer_register",
            description="Create a customer account. Some stores require confirming the email before logging in.",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string", "description": "Email address"},
                    "password": {"type": "string", "description": "Password, at least 6 characters"},
                    "display_name": {"type": "string", "description": "Name shown on the account"},
                    "phone": {"type": "string", "description": "Mainland China mobile number"},
                },
                "required": ["email", "password", "display_name", "phone"],
            },
        ),
        Tool(name="sijoer_logout", description="Logout and clear session", inputSchema=empty),
        Tool(name="sijoer_list_products", description="List all lens products with base prices", inputSchema=empty),
        Tool(
            name="sijoer_get_product",
            description="Get details of a product",
            inputSchema={
                "type": "object",
                "properties": {"product_id": {"type": "string", "description": "Product ID"}},
                "required": ["product_id"],
            },
        ),
        Tool(
            name="sijoer_customize",
            description="Start customizing a product (or show the current customization). Lists options, their steps, current values and the price.",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {
                        "type": "string",
                        "description": "Product to customize (default: keep the current one, or the first product)",
                    },
                },
            },
        ),
        Tool(
            name="sijoer_set_option",
            description="Set the value of a customization option. Lens power values are snapped to the nearest valid step.",
            inputSchema={
                "type": "object",
                "properties": {
                    "option_id": {"type": "string", "description": "Option ID"},
                    "value": {"type": ["string", "number"], "description": "Choice value or number"},
                },
                "required": ["option_id", "value"],
            },
        ),
        Tool(name="sijoer_get_quote", description="Get the price of the current customization", inputSchema=empty),
        Tool(
            name="sijoer_add_to_cart",
            description="Add the customized product to the shopping cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "quantity": {"type": "integer", "description": "Quantity to add (default: 1)", "default": 1, "minimum": 1},
                },
            },
        ),
        Tool(name="sijoer_get_cart", description="Get current shopping cart contents with totals", inputSchema=empty),
        Tool(
            name="sijoer_update_cart_quantity",
            description="Update the quantity of a cart item",
            inputSchema={
                "type": "object",
                "properties": {
                    "item_id": {"type": "string", "description": "Cart item ID"},
                    "quantity": {"type": "integer", "description": "New quantity to set"},
                },
                "required": ["item_id", "quantity"],
            },
        ),
        Tool(
            name="sijoer_remove_from_cart",
            description="Remove an item from the shopping cart",
            inputSchema={
                "type": "object",
                "properties": {"item_id": {"type": "string", "description": "Cart item ID"}},
                "required": ["item_id"],
            },
        ),
        Tool(name="sijoer_get_addresses", description="List saved shipping addresses", inputSchema=empty),
        Tool(
            name="sijoer_save_address",
            description="Add a shipping address, or update an existing one when address_id is given",
            inputSchema={
                "type": "object",
                "properties": {
                    "address_id": {"type": "string", "description": "Address to update (omit to add a new one)"},
                    "recipient_name": {"type": "string", "description": "Recipient name"},
                    "phone": {"type": "string", "description": "Recipient mobile number"},
                    "province": {"type": "string"},
                    "city": {"type": "string"},
                    "district": {"type": "string"},
                    "street_address": {"type": "string", "description": "Street and building"},
                    "postal_code": {"type": "string", "description": "6-digit postal code"},
                    "is_default": {"type": "boolean", "default": False},
                },
                "required": ["recipient_name", "phone", "province", "city", "district", "street_address", "postal_code"],
            },
        ),
        Tool(
            name="sijoer_checkout",
            description="Place an order for the cart contents and open a pending payment",
            inputSchema={
                "type": "object",
                "properties": {
                    "address_id": {"type": "string", "description": "Shipping address ID"},
                    "payment_method": {
                        "type": "string",
                        "description": "Payment method (default: alipay)",
                        "default": "alipay",
                    },
                },
                "required": ["address_id"],
            },
        ),
        Tool(name="sijoer_get_orders", description="Get user's orders", inputSchema=empty),
        Tool(
            name="sijoer_get_order_details",
            description="Get detailed information for a specific order, including all items",
            inputSchema={
                "type": "object",
                "properties": {"order_id": {"type": "string", "description": "Order ID"}},
                "required": ["order_id"],
            },
        ),
        Tool(
            name="sijoer_track_order",
            description="Look up the shipment status of an order by order ID or order number",
            inputSchema={
                "type": "object",
                "properties": {
                    "order_id": {"type": "string", "description": "Order ID"},
                    "order_number": {"type": "string", "description": "Order number"},
                },
            },
        ),
        Tool(name="sijoer_get_profile", description="Get the customer profile", inputSchema=empty),
    ]


AUTHENTICATED_TOOLS = {
    "sijoer_add_to_cart",
    "sijoer_get_cart",
    "sijoer_update_cart_quantity",
    "sijoer_remove_from_cart",
    "sijoer_get_addresses",
    "sijoer_save_address",
    "sijoer_checkout",
    "sijoer_get_orders",
    "sijoer_get_order_details",
    "sijoer_get_profile",
}


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    arguments = arguments or {}
    try:
        if name in AUTHENTICATED_TOOLS and not await ensure_authenticated():
            return text(NOT_AUTHENTICATED)

        if name == "sijoer_login":
            # Use provided credentials or fall back to environment credentials
            email = arguments.get("email") or (credentials.email if credentials else None)
            password = arguments.get("password") or (credentials.password if credentials else None)
            if not email or not password:
                return text("Error: No credentials provided and SIJOER_EMAIL/SIJOER_PASSWORD not configured.")

            if await sijoer_client.login(AuthCredentials(email=email, password=password)):
                return text(f"Successfully logged in as {email}")
            return text("Login failed. Please check your credentials.")

        elif name == "sijoer_register":
            registration = Registration(
                email=arguments["email"],
                password=arguments["password"],
                display_name=arguments["display_name"],
                phone=arguments["phone"],
            )
            if await sijoer_client.register(registration):
                return text(f"Account created and logged in as {registration.email}")
            return text(
                f"Account created for {registration.email}. Confirm the email, then login with sijoer_login."
            )

        elif name == "sijoer_logout":
            await sijoer_client.logout()
            return text("Successfully logged out")

        elif name == "sijoer_list_products":
            products = await sijoer_client.load_products()
            if not products:
                return text("No products available")

            result_lines = [f"Found {len(products)} product(s):\n"]
            for i, product in enumerate(products, 1):
                result_lines.append(f"\n{i}. {product.name}")
                result_lines.append(f"   ID: {product.id}")
                result_lines.append(f"   Price: from ¥{product.base_price}")
            return text("\n".join(result_lines))

        elif name == "sijoer_get_product":
            product = await sijoer_client.load_product(arguments["product_id"])
            if product is None:
                return text(f"Product {arguments['product_id']} not found")
            lines = [product.name, f"ID: {product.id}", f"Price: from ¥{product.base_price}"]
            if product.description:
                lines.append(product.description)
            if product.image_url:
                lines.append(f"Image: {product.image_url}")
            return text("\n".join(lines))

        elif name == "sijoer_customize":
            product_id = arguments.get("product_id")
            if product_id:
                await session.select_product(product_id)
            elif session.product is None:
                await session.load()
            return text(format_customization())

        elif name == "sijoer_set_option":
            if session.product is None:
                return text("No product selected. Use sijoer_customize first.")
            option_id = arguments["option_id"]
            option = session.option(option_id)
            if option is None:
                return text(f"Unknown option: {option_id}")
            state = session.set_value(option_id, arguments["value"])
            return text(
                f"{option.name} set to {state[option_id]}\nTotal: ¥{session.get_price_quote()}"
            )

        elif name == "sijoer_get_quote":
            if session.product is None:
                return text("No product selected. Use sijoer_customize first.")
            missing = session.engine.missing_required(session.options, session.state)
            lines = [f"{session.product.name}: ¥{session.get_price_quote()}"]
            if missing:
                lines.append("Still required: " + ", ".join(o.name for o in missing))
            return text("\n".join(lines))

        elif name == "sijoer_add_to_cart":
            if session.product is None:
                return text("No product selected. Use sijoer_customize first.")
            quantity = arguments.get("quantity", 1)
            payload = await session.add_to_cart(quantity=quantity)
            return text(
                f"Successfully added {session.product.name} (quantity: {quantity}) to cart at ¥{payload.total_price} each"
            )

        elif name == "sijoer_get_cart":
            cart = await sijoer_client.get_cart()
            return text(format_cart(cart))

        elif name == "sijoer_update_cart_quantity":
            await sijoer_client.update_cart_item_quantity(arguments["item_id"], arguments["quantity"])
            return text(f"Successfully updated item {arguments['item_id']} to quantity {arguments['quantity']}")

        elif name == "sijoer_remove_from_cart":
            await sijoer_client.remove_cart_item(arguments["item_id"])
            return text(f"Successfully removed item {arguments['item_id']} from cart")

        elif name == "sijoer_get_addresses":
            addresses = await sijoer_client.get_addresses()
            if not addresses:
                return text("No saved addresses")
            lines = []
            for address in addresses:
                default = " (default)" if address.is_default else ""
                lines.append(f"- {address.id}{default}: {address.one_line()}")
            return text("\n".join(lines))

        elif name == "sijoer_save_address":
            address_id = arguments.get("address_id")
            fields = {k: v for k, v in arguments.items() if k != "address_id"}
            address = await sijoer_client.save_address(AddressInput(**fields), address_id=address_id)
            action = "Updated" if address_id else "Added"
            return text(f"{action} address {address.id}: {address.one_line()}")

        elif name == "sijoer_checkout":
            order = await sijoer_client.create_order(
                arguments["address_id"], payment_method=arguments.get("payment_method", "alipay")
            )
            return text("Order placed, awaiting payment:\n" + "\n".join(format_order(order)))

        elif name == "sijoer_get_orders":
            orders = await sijoer_client.get_orders()
            if not orders:
                return text("No orders found")
            result_lines = [f"Found {len(orders)} order(s):\n"]
            for i, order in enumerate(orders, 1):
                result_lines.append(f"\n{i}. " + "\n".join(format_order(order)))
            return text("\n".join(result_lines))

        elif name == "sijoer_get_order_details":
            order = await sijoer_client.get_order_details(arguments["order_id"])
            if order is None:
                return text(f"Order {arguments['order_id']} not found")
            return text("\n".join(format_order(order)))

        elif name == "sijoer_track_order":
            tracking = await sijoer_client.track_order(
                order_id=arguments.get("order_id"), order_number=arguments.get("order_number")
            )
            if tracking is None:
                return text("Order not found")
            lines = [f"Order {tracking.order_number or tracking.id}", f"   Status: {tracking.status}"]
            if tracking.has_shipment:
                lines.append(f"   Shipped with {tracking.shipping_company}, tracking number {tracking.tracking_number}")
            else:
                lines.append("   No shipment information yet")
            return text("\n".join(lines))

        elif name == "sijoer_get_profile":
            profile = await sijoer_client.get_profile()
            return text(
                f"Profile {profile.id}\nEmail: {profile.email or '-'}\n"
                f"Name: {profile.full_name or '-'}\nPhone: {profile.phone or '-'}"
            )

        else:
            return text(f"Unknown tool: {name}")

    except NotAuthenticatedError:
        return text(NOT_AUTHENTICATED)
    except SelectionValidationError as e:
        logger.info(f"Submission blocked: {e}")
        return text(f"Error: {e}")
    except ProductNotFoundError as e:
        return text(f"Error: {e}")
    except TransientRemoteError as e:
        logger.error(f"Error executing tool {name}: {e}")
        return text(f"Error: {e.message}\nYou can retry the same request.")
    except RemoteError as e:
        logger.error(f"Error executing tool {name}: {e}")
        return text(f"Error: {e.message}")
    except ValueError as e:
        logger.info(f"Rejected input for tool {name}: {e}")
        return text(f"Error: {e}")
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return text(f"Error: {str(e)}")


def setup(settings: Settings) -> None:
    """Create the global client and session from settings."""
    global auth_manager, sijoer_client, session, credentials

    auth_manager = AuthManager(settings.session_file)
    sijoer_client = SijoerClient(settings, auth_manager, cache=TTLCache(settings.catalog_cache_ttl))
    session = CustomizationSession(sijoer_client)
    credentials = settings.credentials

    if credentials:
        logger.info(f"Credentials loaded from environment for: {credentials.email}")
    else:
        logger.warning("No credentials found in environment variables (SIJOER_EMAIL, SIJOER_PASSWORD)")
        logger.warning("Cart and order operations will require manual login via sijoer_login tool")


async def main() -> None:
    """Main entry point for the MCP server."""
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level.upper())
    setup(settings)

    logger.info("Starting Sijoer MCP Server...")

    # Import and run the server
    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        session.close()
        await sijoer_client.close()


if __name__ == "__main__":
    asyncio.run(main())
