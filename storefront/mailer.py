from typing import Dict, Optional, Tuple

import resend


class Mailer:
    password_reset_subject = "Storefront Password Reset"

    def __init__(self, api_key: str, sender: str):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        if self.api_key:
            resend.api_key = self.api_key

    def send(self, payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
        if not self.api_key:
            return False, "Resend API key is not configured."

        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            return False, str(exc)

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)

        return True, None

    def send_password_reset_code(
        self, recipient_email: str, code: str, expiration_minutes: int
    ) -> Tuple[bool, Optional[str]]:
        text_body = (
            f"Use this code {code} to reset your Storefront password within "
            f"{expiration_minutes} minutes. If you did not request a reset, ignore this email."
        )
        html_body = (
            "<p>Use this code to reset your Storefront password:</p>"
            f"<p style=\"font-size:24px;letter-spacing:4px\"><strong>{code}</strong></p>"
            f"<p>The code expires in {expiration_minutes} minutes.</p>"
        )
        payload: Dict[str, object] = {
            "from": self.sender,
            "to": [recipient_email],
            "subject": self.password_reset_subject,
            "html": html_body,
            "text": text_body,
        }
        return self.send(payload)
