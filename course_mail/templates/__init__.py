"""Templates module for the course mail service.

Contains Jinja2 rendering of stored email templates.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from course_mail.templates.renderer import RenderedEmail, TemplateRenderer, html_to_text

__all__ = ["RenderedEmail", "TemplateRenderer", "html_to_text"]
