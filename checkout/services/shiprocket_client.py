"""Shiprocket API client for courier serviceability and rate quotes."""
import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from checkout.services.shipping_service import (
    CourierOption, NotServiceable, QuoteOk, QuoteRequest, QuoteResult, TransientError
)

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 24 * 60 * 60 - 60
# Route rejections come back with these codes and a JSON reason
NOT_SERVICEABLE_STATUSES = (404, 422)


class ShiprocketClient:
    """
    Client for the Shiprocket courier API.

    Safe to share across threads: the auth token is cached per account behind
    a lock and every call builds its own request.
    """

    _token_cache: Dict[str, Dict[str, Any]] = {}
    _token_lock = threading.Lock()

    def __init__(self, email: str, password: str,
                 base_url: str = "https://apiv2.shiprocket.in/v1/external", timeout: int = 10):
        """
        Initialize Shiprocket client.

        Args:
            email: API user email
            password: API user password
            base_url: API root
            timeout: seconds per HTTP call
        """
        if not email or not password:
            raise ValueError("SHIPROCKET_EMAIL and SHIPROCKET_PASSWORD are required")
        self.email = email
        self.password = password
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'ShiprocketClient':
        return cls(
            email=config.get('SHIPROCKET_EMAIL'),
            password=config.get('SHIPROCKET_PASSWORD'),
            base_url=config.get('SHIPROCKET_BASE_URL', "https://apiv2.shiprocket.in/v1/external"),
            timeout=config.get('SHIPPING_QUOTE_TIMEOUT', 10),
        )

    @classmethod
    def clear_token_cache(cls) -> None:
        with cls._token_lock:
            cls._token_cache.clear()

    def _get_token(self) -> str:
        """Return a cached token or log in again when it expired."""
        with self._token_lock:
            cached = self._token_cache.get(self.email)
            now = time.time()
            if cached and cached['expiry'] > now:
                return cached['token']

            logger.info("[SHIPROCKET] Token expired or missing. Logging in...")
            response = requests.post(
                f"{self.base_url}/auth/login",
                json={'email': self.email, 'password': self.password},
                timeout=self.timeout,
            )
            response.raise_for_status()
            token = response.json().get('token')
            if not token:
                raise requests.HTTPError("Shiprocket authentication returned no token", response=response)

            self._token_cache[self.email] = {'token': token, 'expiry': now + TOKEN_TTL_SECONDS}
            return token

    def _invalidate_token(self) -> None:
        with self._token_lock:
            self._token_cache.pop(self.email, None)

    def get_quotes(self, request: QuoteRequest) -> QuoteResult:
        """
        Check serviceability and rates for one parcel.

        Returns:
            QuoteOk with every available courier, NotServiceable when the route
            has no courier, TransientError when the API could not answer.
        """
        params = {
            'pickup_postcode': request.pickup_postcode,
            'delivery_postcode': request.destination_postcode,
            'weight': str(request.weight),
            'length': str(request.length),
            'breadth': str(request.breadth),
            'height': str(request.height),
            'declared_value': str(request.declared_value),
            'cod': '1' if request.cash_on_delivery else '0',
        }

        logger.info(
            f"[SHIPROCKET] Quoting seller {request.seller_id}: "
            f"{request.pickup_postcode} -> {request.destination_postcode} weight={request.weight}"
        )

        try:
            token = self._get_token()
            response = requests.get(
                f"{self.base_url}/courier/serviceability/",
                params=params,
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.timeout,
            )
            if response.status_code == 401:
                self._invalidate_token()
            if response.status_code in NOT_SERVICEABLE_STATUSES:
                body = _json_body(response)
                if body is not None:
                    logger.info(f"[SHIPROCKET] Seller {request.seller_id} not serviceable: {body.get('message')}")
                    return self._parse_serviceability(body)
            response.raise_for_status()
            data = response.json()

        except requests.Timeout:
            logger.warning(f"[SHIPROCKET] Timeout quoting seller {request.seller_id}")
            return TransientError('Courier rate service timed out')
        except requests.HTTPError as e:
            body = e.response.text if e.response is not None else str(e)
            logger.error(f"[SHIPROCKET] Error quoting seller {request.seller_id}: {body}")
            return TransientError('Courier rate service returned an error')
        except requests.RequestException as e:
            logger.error(f"[SHIPROCKET] Unexpected error: {str(e)}")
            return TransientError('Courier rate service unreachable')

        return self._parse_serviceability(data)

    @staticmethod
    def _parse_serviceability(data: Dict[str, Any]) -> QuoteResult:
        if data.get('status') != 200:
            return NotServiceable(data.get('message') or 'Not serviceable')

        raw = (data.get('data') or {}).get('available_courier_companies') or []
        couriers = []
        for item in raw:
            option = _to_option(item)
            if option is not None:
                couriers.append(option)

        if not couriers:
            return NotServiceable('No shipping available')
        return QuoteOk(couriers=couriers)


def _to_option(item: Dict[str, Any]) -> Optional[CourierOption]:
    try:
        return CourierOption.from_dict({
            'courier_id': item.get('courier_company_id'),
            'courier_name': item.get('courier_name'),
            'rate': item.get('rate'),
            'etd': item.get('etd'),
        })
    except ValueError:
        logger.warning(f"[SHIPROCKET] Skipping malformed courier entry: {item}")
        return None


def _json_body(response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None
