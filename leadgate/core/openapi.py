"""OpenAPI schema customization.

Adds the ``X-API-Key`` security scheme, tag descriptions, and exempts the
health endpoint from the global security requirement.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

TAGS_METADATA: list[dict[str, str]] = [
    {
        "name": "Leads",
        "description": "Compliance-checked, cached and rate-limited lead queries.",
    },
    {
        "name": "Admin",
        "description": "Cache and rate-limiter inspection and maintenance.",
    },
    {
        "name": "Health",
        "description": "Liveness and component health.",
    },
]

PUBLIC_PATHS = frozenset({"/health"})


def apply_openapi_customizations(app: FastAPI) -> None:
    """Wrap ``app.openapi`` so the generated schema carries auth and tags."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Provide your API key via the X-API-Key header.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        known = {t.get("name") for t in tags}
        tags.extend(tag for tag in TAGS_METADATA if tag["name"] not in known)

        for path, methods in schema.get("paths", {}).items():
            if path in PUBLIC_PATHS:
                for operation in methods.values():
                    if isinstance(operation, dict):
                        operation["security"] = []

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
