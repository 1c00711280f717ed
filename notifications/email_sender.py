"""
SMTP email sender for signal notifications.

Handles:
  - SMTP connection with TLS
  - MIME multipart construction (HTML + plaintext fallback)
  - Credential management (env vars > config file)

No external dependencies beyond Python stdlib (email, smtplib, ssl).
"""
import os
import ssl
import html
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate

logger = logging.getLogger("signalengine.notifications.email_sender")

_SEVERITY_COLORS = {"CRITICAL": "#FF1744", "WARNING": "#FFC107", "INFO": "#2196F3"}


class EmailSender:
    """
    SMTP email sender.

    Credential resolution order:
      1. Environment variables: SIGNALENGINE_SMTP_USER, SIGNALENGINE_SMTP_PASS
      2. Config file: config.email.smtp_username, config.email.smtp_password

    The recipient is per message; tenants choose where their signals go.
    """

    def __init__(self, config: dict):
        email_config = config.get("email", {})
        self.smtp_host = email_config.get("smtp_host", "smtp.gmail.com")
        self.smtp_port = email_config.get("smtp_port", 587)
        self.use_tls = email_config.get("use_tls", True)
        self.from_address = email_config.get("from_address", "")
        self.from_name = email_config.get("from_name", "Signal Engine")

        # Credential resolution: env vars take priority
        self.username = os.environ.get(
            "SIGNALENGINE_SMTP_USER",
            email_config.get("smtp_username", ""),
        )
        self.password = os.environ.get(
            "SIGNALENGINE_SMTP_PASS",
            email_config.get("smtp_password", ""),
        )

    def is_configured(self) -> bool:
        """Check if all required SMTP fields are present."""
        return all([self.smtp_host, self.from_address, self.username, self.password])

    def send_notification(self, to_address: str, subject: str, body: str) -> bool:
        """Send one signal notification. Returns False on any delivery problem."""
        if not self.is_configured():
            logger.warning("Email not configured - cannot deliver notification")
            return False
        if not to_address or "@" not in to_address:
            logger.warning(f"Invalid email recipient: {to_address!r}")
            return False

        severity = _severity_from_subject(subject)
        color = _SEVERITY_COLORS.get(severity, "#636E72")
        body_html = "<br>".join(html.escape(line) for line in body.splitlines())

        html_content = f"""
        <div style="font-family: system-ui, sans-serif; max-width: 560px; margin: 0 auto;
                    padding: 20px; background: #FFFFFF; color: #1E272E; border-radius: 12px;">
            <div style="background: #F0F1F6; padding: 16px; border-radius: 8px;
                        border-left: 4px solid {color};">
                <h3 style="margin-top: 0; color: {color};">{html.escape(subject)}</h3>
                <p>{body_html}</p>
            </div>
            <p style="color: #636E72; font-size: 12px; margin-top: 16px;">
                Signal Engine &mdash; automated notification
            </p>
        </div>
        """

        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = to_address
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(body, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        return self._send(msg)

    def test_connection(self) -> dict:
        """Test SMTP connectivity without sending an email."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                return {"status": "ok", "message": "SMTP connection successful",
                        "server_response": str(server.noop())}
        except smtplib.SMTPAuthenticationError as e:
            return {"status": "error", "message": f"Authentication failed: {e}"}
        except smtplib.SMTPConnectError as e:
            return {"status": "error", "message": f"Connection failed: {e}"}
        except (smtplib.SMTPException, OSError) as e:
            return {"status": "error", "message": str(e)}

    def _send(self, msg: MIMEMultipart) -> bool:
        """Internal: send a constructed MIME message via SMTP."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']}: {msg['Subject']}")
            return True
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed. Check username/password.")
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error(f"Recipient refused: {msg['To']}")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed: {e}")
            return False


def _severity_from_subject(subject):
    """Signal titles start with "[SEVERITY]"."""
    if subject.startswith("[") and "]" in subject:
        return subject[1:subject.index("]")]
    return ""
