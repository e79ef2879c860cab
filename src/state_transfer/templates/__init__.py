"""Jinja2 templates for the configuration files read by side-car processes."""

from typing import Any

from jinja2 import Environment, PackageLoader, StrictUndefined

_env = Environment(
    loader=PackageLoader("state_transfer", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)


def render(template_name: str, **values: Any) -> str:
    """Render one of the bundled ``*.j2`` templates."""
    return _env.get_template(template_name).render(**values)
