"""
Template rendering service.

This module provides the TemplateRenderer class, which renders the final
article list through a user-supplied Jinja2 template. The template receives
a single ``articles`` variable; each article has ``link``, ``title``,
``summary``, ``source_link``, ``source_title`` and ``timestamp``.
"""

import logging
import os
from typing import List

import jinja2

from feedring.errors import TemplateError
from feedring.models import Article

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders articles with a Jinja2 template file."""

    def __init__(self, template_file: str):
        self.template_file = template_file
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(
                os.path.dirname(os.path.abspath(template_file))
            ),
            autoescape=True,
            undefined=jinja2.StrictUndefined,
        )

    def load(self) -> jinja2.Template:
        """Loads and compiles the template, so errors show up before fetching."""
        try:
            return self.env.get_template(os.path.basename(self.template_file))
        except jinja2.TemplateNotFound as e:
            raise TemplateError(self.template_file, "file not found") from e
        except jinja2.TemplateError as e:
            raise TemplateError(self.template_file, str(e)) from e

    def render(self, articles: List[Article]) -> str:
        template = self.load()
        try:
            output = template.render(articles=articles)
        except jinja2.TemplateError as e:
            raise TemplateError(self.template_file, str(e)) from e
        logger.info("Rendered %d articles with %s.", len(articles), self.template_file)
        return output
