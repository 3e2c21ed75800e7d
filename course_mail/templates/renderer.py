"""Jinja2 template renderer for the course mail service.

Renders subject, HTML and plain-text bodies for queued jobs. Template
definitions live in the email_templates table and are looked up at send
time, so an edited template applies to every job still in the queue.

Version: 2.1.0
"""

from __future__ import annotations

import html
import re
from collections.abc import Callable
from dataclasses import dataclass

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from course_mail.core.exceptions import TemplateRenderError
from course_mail.core.logger import get_logger
from course_mail.models.email import EmailJob, EmailTemplate

logger = get_logger(__name__)

TemplateSource = Callable[[str], "EmailTemplate | None"]

_TAG_RE = re.compile(r"<[^>]*>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")


@dataclass(frozen=True)
class RenderedEmail:
    """Final content of one email, ready to send."""

    subject: str
    html: str
    text: str


def html_to_text(body_html: str) -> str:
    """Plain-text fallback: strip tags and unescape entities."""
    text = html.unescape(_TAG_RE.sub("", body_html))
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


class TemplateRenderer:
    """Renders queued jobs into final email content.

    Jobs with a template_key are rendered from the template definition
    with template_data as context; other jobs use their stored content.
    Templates run sandboxed: attribute access into Python internals
    raises TemplateRenderError.
    """

    def __init__(self, template_source: TemplateSource) -> None:
        """Initialize template renderer.

        Args:
            template_source: Looks up a template definition by key
                (typically EmailQueueManager.get_template).
        """
        self._template_source = template_source
        self.html_env = SandboxedEnvironment(autoescape=True, trim_blocks=True, lstrip_blocks=True)
        self.text_env = SandboxedEnvironment(autoescape=False, trim_blocks=True, lstrip_blocks=True)
        logger.info("Template renderer initialized")

    def render(self, job: EmailJob) -> RenderedEmail:
        """Produce subject, HTML and text for a job.

        Raises:
            TemplateRenderError: If the template is missing or fails to render.
        """
        if not job.template_key:
            text = job.text_body or html_to_text(job.html_body)
            return RenderedEmail(job.subject, job.html_body, text)

        template = self._template_source(job.template_key)
        if template is None:
            raise TemplateRenderError(
                f"Template not found: {job.template_key}",
                template_key=job.template_key,
            )
        return self.render_template(template, job.template_data or {})

    def render_template(self, template: EmailTemplate, data: dict[str, str]) -> RenderedEmail:
        """Render a template definition with the given values."""
        key = template.template_key
        try:
            logger.debug(f"Rendering template: {key}")
            subject = self.text_env.from_string(template.subject_template).render(**data)
            body_html = self.html_env.from_string(template.body_html).render(**data)
            if template.body_text:
                body_text = self.text_env.from_string(template.body_text).render(**data)
            else:
                body_text = html_to_text(body_html)
        except TemplateError as e:
            logger.error(f"Failed to render template {key}: {e}")
            raise TemplateRenderError(f"Failed to render {key}: {e}", template_key=key) from e

        # Header injection guard
        subject = " ".join(subject.split())
        return RenderedEmail(subject, body_html, body_text)
