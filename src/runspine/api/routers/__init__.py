"""HTTP routers, mounted under ``settings.api_prefix``."""
