"""Razorpay API client for payment intents (orders)."""
import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class RazorpayClient:
    """Client for the Razorpay Orders API."""

    BASE_URL = "https://api.razorpay.com/v1"

    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None, timeout: int = 10):
        """
        Initialize Razorpay client.

        Args:
            key_id: public key id (also handed to the browser checkout)
            key_secret: secret used for API auth and signature checks
        """
        if not key_id or not key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required")
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'RazorpayClient':
        return cls(config.get('RAZORPAY_KEY_ID'), config.get('RAZORPAY_KEY_SECRET'))

    def create_order(
        self,
        amount_paise: int,
        currency: str = 'INR',
        receipt: Optional[str] = None,
        notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Create a Razorpay order (the payment intent the browser checkout pays).

        Args:
            amount_paise: amount in the smallest currency unit
            currency: ISO currency code
            receipt: our reference for the attempt
            notes: small key/value context shown in the Razorpay dashboard

        Returns:
            Dict with at least ``id``, ``amount`` and ``currency``

        Raises:
            requests.HTTPError: If the Razorpay API returns an error
        """
        url = f"{self.BASE_URL}/orders"
        payload: Dict[str, Any] = {
            "amount": int(amount_paise),
            "currency": currency,
        }
        if receipt:
            payload["receipt"] = receipt[:40]
        if notes:
            payload["notes"] = notes

        logger.info(f"[RAZORPAY] Creating order amount={amount_paise} {currency} receipt={receipt}")

        try:
            response = requests.post(
                url, json=payload, auth=(self.key_id, self.key_secret), timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
            logger.info(f"[RAZORPAY] Order created: {data.get('id')}")
            return data

        except requests.HTTPError as e:
            logger.error(f"[RAZORPAY] Error creating order: {e.response.text}")
            raise
        except requests.RequestException as e:
            logger.error(f"[RAZORPAY] Unexpected error: {str(e)}")
            raise
