"""Server-rendered HTML for the customer-facing pages."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from offer_portal.decisions.csrf import CSRF_FIELD_NAME

_TEMPLATE_DIR = Path(__file__).parent / "templates"
_jinja_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=True,
)


def render_template(template_name: str, **context: object) -> str:
    template = _jinja_env.get_template(template_name)
    return template.render(csrf_field_name=CSRF_FIELD_NAME, **context)
