"""SMTP configuration model.

Defines Pydantic model for SMTP server and connection pool settings.

Author: Odiseo
Created: 2025-12-01
Version: 1.0.0
"""

from pydantic import BaseModel, EmailStr, Field, field_validator


class SMTPConfig(BaseModel):
    """SMTP server configuration model.

    Attributes:
        host: SMTP server hostname.
        port: SMTP server port (1-65535).
        username: SMTP authentication username.
        password: SMTP authentication password.
        from_email: Sender email address.
        from_name: Sender display name.
        use_tls: Whether to use STARTTLS.
        timeout: Connect and per-command timeout in seconds.
        pool_size: Maximum open connections in the pool.
        max_messages_per_connection: Messages before a connection is rotated.
        idle_timeout: Seconds an idle connection is kept before reconnecting.
    """

    host: str = Field(..., min_length=1, description="SMTP server hostname")
    port: int = Field(..., ge=1, le=65535, description="SMTP server port")
    username: str = Field(default="", description="SMTP authentication username")
    password: str = Field(..., description="SMTP authentication password")
    from_email: EmailStr = Field(..., description="Sender email address")
    from_name: str = Field(default="Training Bookings", description="Sender display name")
    use_tls: bool = Field(default=True, description="Use STARTTLS")
    timeout: int = Field(default=30, ge=1, le=300, description="Timeout (seconds)")
    pool_size: int = Field(default=5, ge=1, le=50, description="Pooled connections")
    max_messages_per_connection: int = Field(default=100, ge=1, description="Rotation threshold")
    idle_timeout: int = Field(default=60, ge=1, description="Idle reconnect (seconds)")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password is not empty."""
        if not v or not v.strip():
            raise ValueError("SMTP password cannot be empty")
        return v
