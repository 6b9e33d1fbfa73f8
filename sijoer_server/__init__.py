"""sijoer_server - MCP server for the Sijoer contact-lens storefront."""

__version__ = "0.1.0"
