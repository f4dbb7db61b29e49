"""Rendering of work item fields from Jinja2 templates."""

from typing import Dict

from jinja2 import ChainableUndefined, Environment, Template, TemplateError
from loguru import logger

from alert_workitem_receiver.config import ReceiverConfig
from alert_workitem_receiver.exceptions import RenderError
from alert_workitem_receiver.models import AlertGroup, RenderedFields, TemplateContext


class FieldRenderer:
    """Renders title, description and custom fields for a receiver.

    Names missing from the context render as empty strings. Syntax errors and
    failing filters raise :class:`RenderError`.
    """

    def __init__(self, config: ReceiverConfig):
        self.config = config
        self._env = Environment(undefined=ChainableUndefined, autoescape=False)
        self._templates: Dict[str, Template] = {}

    def _compile(self, field: str, source: str) -> Template:
        template = self._templates.get(source)
        if template is None:
            try:
                template = self._env.from_string(source)
            except TemplateError as e:
                raise RenderError(field, str(e)) from e
            self._templates[source] = template
        return template

    def render_template(self, field: str, source: str, context: TemplateContext) -> str:
        """Render a single template against the context.

        Args:
            field: Field name, used in error messages
            source: Jinja2 template source
            context: Alert group context

        Returns:
            Rendered string

        Raises:
            RenderError: If the template is malformed or evaluation fails
        """
        template = self._compile(field, source)
        try:
            return template.render(**context.as_variables())
        except (TemplateError, TypeError, ValueError, ArithmeticError) as e:
            logger.error(f"Failed to render {field} for receiver {self.config.name}: {e}")
            raise RenderError(field, str(e)) from e

    def render(self, group: AlertGroup) -> RenderedFields:
        """Render every configured template for an alert group.

        Raises:
            RenderError: If any template fails; nothing is returned in that case
        """
        context = TemplateContext.from_alert_group(group)

        title = self.render_template("title", self.config.title, context)
        description = self.render_template("description", self.config.description, context)
        fields = {
            path: self.render_template(path, value, context) if isinstance(value, str) else value
            for path, value in sorted(self.config.fields.items())
        }

        logger.debug(f"Rendered title {title!r} and {len(fields)} custom fields")
        return RenderedFields(title=title, description=description, fields=fields)

    def validate(self) -> None:
        """Compile every template without rendering, raising RenderError on the first bad one."""
        self._compile("title", self.config.title)
        self._compile("description", self.config.description)
        for path, value in sorted(self.config.fields.items()):
            if isinstance(value, str):
                self._compile(path, value)
