"""Template rendering for generated terraform files."""

from phoenix_infra.render.backend import (
    BACKEND_TEMPLATE,
    REQUIRED_KEYS,
    render_backend,
    render_template,
    write_backend_file,
)

__all__ = [
    "BACKEND_TEMPLATE",
    "REQUIRED_KEYS",
    "render_backend",
    "render_template",
    "write_backend_file",
]
