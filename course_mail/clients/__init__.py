"""Clients module for the course mail service.

Contains integrations with external services: SMTP servers and
attachment storage.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from course_mail.clients.attachments import AttachmentFetcher, FetchedAttachment
from course_mail.clients.smtp import SMTPConnectionPool

__all__ = ["AttachmentFetcher", "FetchedAttachment", "SMTPConnectionPool"]
