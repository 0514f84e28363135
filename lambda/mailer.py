from __future__ import annotations

from typing import Any


VERIFICATION_SUBJECT = "Mini Trello - Verification Code"

_HTML_TEMPLATE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #0066cc;">Mini Trello Verification Code</h2>
  <p>Your verification code is:</p>
  <div style="background-color: #f4f4f4; padding: 20px; text-align: center; font-size: 32px; font-weight: bold; letter-spacing: 5px; margin: 20px 0;">
    {code}
  </div>
  <p>This code will expire in {minutes} minutes.</p>
  <p>If you didn't request this code, please ignore this email.</p>
</div>
"""


class SesMailer:
    def __init__(self, ses_client: Any, sender: str) -> None:
        self._ses = ses_client
        self._sender = str(sender or "").strip()

    @property
    def configured(self) -> bool:
        return bool(self._sender)

    def send_verification_code(self, email: str, code: str, *, minutes: int = 10) -> str:
        """Send the code; returns the SES message id."""
        text = (
            f"Your Mini Trello verification code is {code}.\n"
            f"It expires in {minutes} minutes. If you didn't request it, ignore this email.\n"
        )
        resp = self._ses.send_email(
            Source=self._sender,
            Destination={"ToAddresses": [email]},
            Message={
                "Subject": {"Data": VERIFICATION_SUBJECT, "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": text, "Charset": "UTF-8"},
                    "Html": {"Data": _HTML_TEMPLATE.format(code=code, minutes=minutes), "Charset": "UTF-8"},
                },
            },
        )
        return str(resp.get("MessageId") or "")
