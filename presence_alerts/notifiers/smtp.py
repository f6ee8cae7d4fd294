"""
Email delivery of alerts over SMTP.
"""
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional

from loguru import logger

from ..exceptions import NotifyError
from ..models import Alert, AlertKind
from .base import Notifier

KIND_COLORS = {
    AlertKind.MAX_OCCUPANCY: '#ff4444',
    AlertKind.IDLE_ROOM: '#ff8800',
    AlertKind.ABNORMAL_PRESENCE: '#ff4444',
    AlertKind.TIME_PATTERN: '#ff8800',
}

SUBJECTS = {
    AlertKind.MAX_OCCUPANCY: 'Alert: Maximum occupancy in room',
    AlertKind.IDLE_ROOM: 'Alert: Idle room',
    AlertKind.ABNORMAL_PRESENCE: 'Alert: Abnormal presence',
    AlertKind.TIME_PATTERN: 'Alert: Unusual time pattern',
}


class EmailNotifier(Notifier):
    """
    Sends alert emails.

    Occupancy and presence alerts go to the administrator, idle and
    time-pattern alerts go to the room manager.
    """

    def __init__(self,
                 smtp_host: str,
                 smtp_port: int = 587,
                 sender: Optional[str] = None,
                 admin_email: Optional[str] = None,
                 manager_email: Optional[str] = None,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 timeout: float = 10.0):
        """
        Initialize email notifier.

        Args:
            smtp_host: SMTP server host
            smtp_port: SMTP server port (STARTTLS)
            sender: From address
            admin_email: Recipient for MAX_OCCUPANCY and ABNORMAL_PRESENCE
            manager_email: Recipient for IDLE_ROOM and TIME_PATTERN
            username: Optional SMTP login
            password: Optional SMTP password
            timeout: Socket timeout in seconds
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout
        self.recipients: Dict[AlertKind, Optional[str]] = {
            AlertKind.MAX_OCCUPANCY: admin_email,
            AlertKind.ABNORMAL_PRESENCE: admin_email,
            AlertKind.IDLE_ROOM: manager_email or admin_email,
            AlertKind.TIME_PATTERN: manager_email or admin_email,
        }

    def recipient_for(self, alert: Alert) -> Optional[str]:
        return self.recipients.get(alert.kind)

    def build_message(self, alert: Alert, recipient: str) -> MIMEMultipart:
        """Compose a multipart message with plain text and HTML bodies."""
        msg = MIMEMultipart('alternative')
        msg['From'] = self.sender or ''
        msg['To'] = recipient
        msg['Subject'] = SUBJECTS[alert.kind]

        timestamp = alert.triggered_at.strftime('%d/%m/%Y %H:%M:%S')
        text = f"""
Alert: {alert.title}
Device: {alert.device_id}
Occupancy: {alert.occupancy_at_trigger}
Time: {timestamp}

{alert.description}
"""
        color = KIND_COLORS.get(alert.kind, '#ff4444')
        html = f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">
    <div style="background-color: {color}; color: white; padding: 20px; text-align: center;">
      <h2>{alert.title}</h2>
    </div>
    <div style="background-color: #f9f9f9; padding: 20px; border: 1px solid #ddd;">
      <p>{alert.description}</p>
      <p><strong>Device:</strong> {alert.device_id}<br>
         <strong>Occupancy:</strong> {alert.occupancy_at_trigger}<br>
         <strong>Time:</strong> {timestamp}</p>
    </div>
  </body>
</html>"""
        msg.attach(MIMEText(text, 'plain'))
        msg.attach(MIMEText(html, 'html'))
        return msg

    def notify(self, alert: Alert) -> None:
        recipient = self.recipient_for(alert)
        if not recipient:
            raise NotifyError(f"No email recipient configured for {alert.kind.value}")

        msg = self.build_message(alert, recipient)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                # Authenticate if credentials are provided
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyError(f"Email error: {e}") from e

        logger.info(f"Email sent to {recipient} for alert {alert.id} ({alert.kind.value})")
