"""
Jinja2 environment for invoice and email HTML.

Templates live in backend/templates/. Autoescape is on for .html so customer
supplied names and addresses are always escaped.
"""
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def _inr(value) -> str:
    return f"₹{float(value or 0):,.2f}"


env.filters["inr"] = _inr


def render_template(name: str, **ctx) -> str:
    return env.get_template(name).render(**ctx)
