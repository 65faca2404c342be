# =============================================================================
# Email Delivery Integration (AWS SES)
# =============================================================================
#
# Setup:
#   1. Verify your sending email in AWS SES console
#   2. Set env vars:
#      - AWS_SES_FROM_EMAIL=noreply@yourdomain.com
#      - AWS_ACCESS_KEY_ID=...
#      - AWS_SECRET_ACCESS_KEY=...
#      - AWS_REGION=us-east-1
#
# Delivery is best-effort: every method returns False on failure instead
# of raising, and callers decide whether that matters.
#
# =============================================================================

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from usergate.config import Settings, get_settings
from usergate.core.utils import mask_email

logger = logging.getLogger(__name__)


# =============================================================================
# Email Templates
# =============================================================================

TEMPLATES = {
    "verification_code": {
        "subject": "Your password recovery code",
        "html": """
        <html>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="color: #333;">Password recovery</h1>
            <p>Use this code to continue resetting your password:</p>
            <p style="text-align: center; font-size: 32px; letter-spacing: 8px; margin: 30px 0;"><strong>{code}</strong></p>
            <p style="color: #666; font-size: 14px;">The code expires in {ttl_minutes} minutes.</p>
            <p style="color: #666; font-size: 14px;">If you didn't request this, you can safely ignore this email.</p>
        </body>
        </html>
        """,
        "text": """
Password recovery

Use this code to continue resetting your password: {code}

The code expires in {ttl_minutes} minutes.

If you didn't request this, you can safely ignore this email.
        """,
    },
    
    "password_changed": {
        "subject": "Your password was changed",
        "html": """
        <html>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="color: #333;">Password updated</h1>
            <p>The password for your account was changed successfully.</p>
            <p style="text-align: center; margin: 30px 0;">
                <a href="{login_url}" style="background: #4A90A4; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; display: inline-block;">
                    Sign in
                </a>
            </p>
            <p style="color: #666; font-size: 14px;">If you didn't make this change, contact an administrator right away.</p>
        </body>
        </html>
        """,
        "text": """
Password updated

The password for your account was changed successfully.
Sign in at: {login_url}

If you didn't make this change, contact an administrator right away.
        """,
    },
}


# =============================================================================
# Notifier Interface
# =============================================================================


class Notifier(ABC):
    """Outbound notifications used by the recovery flow."""
    
    @abstractmethod
    async def send_verification_code(self, email: str, code: str) -> bool:
        pass
    
    @abstractmethod
    async def send_password_changed(self, email: str) -> bool:
        pass


# =============================================================================
# Email Service
# =============================================================================


class EmailService(Notifier):
    """Send emails via AWS SES."""
    
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client = None
    
    @property
    def client(self):
        """Lazy-load SES client."""
        if self._client is None and self.settings.use_aws:
            self._client = boto3.client(
                "ses",
                region_name=self.settings.aws_region,
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
            )
        return self._client
    
    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return self.settings.use_aws and bool(self.settings.aws_ses_from_email)
    
    async def send(
        self,
        to: str,
        template: str,
        data: dict[str, Any] | None = None,
        subject_override: str | None = None,
    ) -> bool:
        """
        Send an email using a template.
        
        Args:
            to: Recipient email address
            template: Template name (e.g., "verification_code")
            data: Template variables to substitute
            subject_override: Override the template's subject
        
        Returns:
            True if sent successfully, False otherwise
        """
        if template not in TEMPLATES:
            logger.error(f"Unknown email template: {template}")
            return False
        
        if not self.is_configured:
            logger.warning(f"Email not configured - would send '{template}' to {mask_email(to)}")
            return False
        
        tpl = TEMPLATES[template]
        data = data or {}
        
        try:
            subject = subject_override or tpl["subject"]
            html_body = tpl["html"].format(**data)
            text_body = tpl["text"].format(**data)
            
            response = self.client.send_email(
                Source=self.settings.aws_ses_from_email,
                Destination={"ToAddresses": [to]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {
                        "Html": {"Data": html_body, "Charset": "UTF-8"},
                        "Text": {"Data": text_body, "Charset": "UTF-8"},
                    },
                },
            )
            
            logger.info(f"Email sent to {mask_email(to)}: {template} (MessageId: {response['MessageId']})")
            return True
            
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send email to {mask_email(to)}: {e}")
            return False
        except KeyError as e:
            logger.error(f"Missing template variable for '{template}': {e}")
            return False
    
    async def send_verification_code(self, email: str, code: str) -> bool:
        """Send the 6-digit password recovery code."""
        return await self.send(
            to=email,
            template="verification_code",
            data={"code": code, "ttl_minutes": self.settings.verification_code_ttl_minutes},
        )
    
    async def send_password_changed(self, email: str) -> bool:
        """Confirm a completed password change."""
        return await self.send(
            to=email,
            template="password_changed",
            data={"login_url": f"{self.settings.app_url}/login"},
        )
