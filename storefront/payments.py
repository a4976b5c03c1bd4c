from datetime import datetime, timedelta
from typing import Dict, Optional
from uuid import uuid4

import requests
from flask import current_app, jsonify, request
from flask_jwt_extended import jwt_required

from .auth import get_current_user
from .errors import InvalidInput, UpstreamFailure
from .helpers import safe_float


class SumUpGateway:
    base_url = "https://api.sumup.com"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        merchant_email: str,
        currency: str = "EUR",
        timeout: float = 15,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.merchant_email = merchant_email
        self.currency = currency
        self.timeout = timeout
        self._token_cache: Dict[str, Optional[object]] = {"access_token": None, "expires_at": None}

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def get_access_token(self) -> str:
        if not self.configured:
            raise UpstreamFailure("Payment provider is not configured. Please contact support.")

        now = datetime.utcnow()
        if (
            self._token_cache["access_token"]
            and self._token_cache["expires_at"]
            and self._token_cache["expires_at"] > now + timedelta(seconds=30)
        ):
            return self._token_cache["access_token"]

        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            response = requests.post(f"{self.base_url}/token", data=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            current_app.logger.error("SumUp auth error: %s", exc)
            raise UpstreamFailure("Failed to authenticate with payment provider.") from exc

        access_token = data.get("access_token")
        if not access_token:
            raise UpstreamFailure("Failed to authenticate with payment provider.")
        self._token_cache["access_token"] = access_token
        self._token_cache["expires_at"] = now + timedelta(seconds=data.get("expires_in", 3600))
        return access_token

    def create_checkout(self, amount: float, reference: str, description: str) -> Dict:
        access_token = self.get_access_token()
        checkout_payload = {
            "checkout_reference": reference,
            "amount": amount,
            "currency": self.currency,
            "pay_to_email": self.merchant_email,
            "description": description,
        }

        current_app.logger.info("Creating SumUp checkout %s for %.2f %s", reference, amount, self.currency)
        try:
            response = requests.post(
                f"{self.base_url}/v0.1/checkouts",
                json=checkout_payload,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            current_app.logger.error("SumUp checkout error: %s", exc)
            raise UpstreamFailure("Failed to create payment session.") from exc

        if response.status_code != 201:
            current_app.logger.error("SumUp checkout failed: %s", response.text)
            raise UpstreamFailure("Failed to create payment session.")

        return response.json()


def register_payment_routes(app, db, gateway: SumUpGateway):
    @app.route("/api/v1/payment/process", methods=["POST"])
    @jwt_required()
    def process_payment():
        current_user = get_current_user(db)
        payload = request.get_json(silent=True) or {}

        amount = round(safe_float(payload.get("amount"), 0.0), 2)
        if amount <= 0:
            raise InvalidInput("Payment amount must be greater than zero.")

        reference = f"ORDER-{uuid4().hex[:10].upper()}"
        checkout = gateway.create_checkout(amount, reference, f"Order {reference}")
        app.logger.info("Checkout %s opened for %s", reference, current_user.get("email"))

        return jsonify(
            {
                "success": True,
                "checkoutId": checkout.get("id"),
                "reference": reference,
                "amount": amount,
                "currency": gateway.currency,
            }
        )

    @app.route("/api/v1/payment/config", methods=["GET"])
    @jwt_required()
    def payment_config():
        get_current_user(db)
        return jsonify(
            {
                "success": True,
                "enabled": gateway.configured,
                "merchantEmail": gateway.merchant_email,
                "currency": gateway.currency,
            }
        )
