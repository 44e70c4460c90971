"""
Shiprocket Service - courier rates, serviceability and adhoc order creation.
The API token is cached in Redis and refreshed on a 401.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.redis import cache_token, get_cached_token

logger = logging.getLogger(__name__)

TOKEN_CACHE_NAME = "shiprocket"
# Shiprocket tokens last ten days; re-login well before that
DEFAULT_TOKEN_TTL_SECONDS = 72000

METRO_PINCODE_PREFIXES = ("11", "40", "56", "50", "60", "70", "41", "38", "30", "39")
INVALID_PINCODES = ("000000", "111111", "999999")


class ShiprocketError(Exception):
    """Shiprocket API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ShippingRate:
    success: bool
    shipping_cost: float = 0
    courier_name: Optional[str] = None
    courier_company_id: Optional[int] = None
    estimated_days: Optional[int] = None
    error: Optional[str] = None


@dataclass
class Serviceability:
    serviceable: bool
    available_couriers: List[str] = field(default_factory=list)
    cod_available: bool = False
    min_days: int = 0
    max_days: int = 0
    reason: Optional[str] = None


def normalize_pincode(value: Optional[str]) -> Optional[str]:
    """Digits only; None unless exactly six remain."""
    digits = "".join(ch for ch in str(value or "") if ch.isdigit())
    return digits if len(digits) == 6 else None


def estimate_delivery_days(pincode: str) -> Dict[str, int]:
    """Rough ETA from a metro warehouse."""
    if pincode[:2] in METRO_PINCODE_PREFIXES:
        return {"min_days": 2, "max_days": 4}
    return {"min_days": 4, "max_days": 6}


class ShiprocketService:
    """Service for the Shiprocket external API."""

    def __init__(self, max_retries: Optional[int] = None):
        self.base_url = settings.shiprocket_base_url.rstrip("/")
        self.email = settings.shiprocket_email
        self.password = settings.shiprocket_password
        self.pickup_pincode = settings.shiprocket_pickup_pincode
        self.max_retries = max_retries or settings.shiprocket_max_pickup_retries

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.password)

    async def authenticate(self, force_refresh: bool = False) -> str:
        """Return a cached API token, logging in when none is cached."""
        if not force_refresh:
            cached = await get_cached_token(TOKEN_CACHE_NAME)
            if cached:
                return cached

        if not self.has_credentials:
            raise ShiprocketError(
                "Shiprocket credentials missing. Set SHIPROCKET_EMAIL and SHIPROCKET_PASSWORD."
            )

        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                f"{self.base_url}/external/auth/login",
                json={"email": self.email, "password": self.password},
            )

        if response.status_code != 200:
            raise ShiprocketError(
                f"Shiprocket auth failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise ShiprocketError(f"Shiprocket auth returned non-JSON: {response.text[:200]}")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise ShiprocketError("Shiprocket auth response missing token")

        ttl = int(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
        await cache_token(TOKEN_CACHE_NAME, token, ttl)

        logger.info("Shiprocket token refreshed")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Authenticated call; a 401 forces a token refresh and is retried."""
        attempt = 0
        force_refresh = False
        while True:
            token = await self.authenticate(force_refresh=force_refresh)
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )

            if response.status_code == 401 and attempt < self.max_retries - 1:
                logger.warning(f"Shiprocket 401 on {path}, refreshing token")
                attempt += 1
                force_refresh = True
                continue

            try:
                data = response.json()
            except ValueError:
                raise ShiprocketError(
                    f"Invalid JSON response: {response.text[:200]}",
                    status_code=response.status_code,
                )

            if response.status_code >= 400:
                message = data.get("message") if isinstance(data, dict) else None
                raise ShiprocketError(
                    f"Shiprocket API error: {response.status_code} - {message or data}",
                    status_code=response.status_code,
                )
            return data

    async def calculate_shipping_rate(
        self,
        pincode: str,
        weight: Optional[float] = None,
        cod: bool = False,
    ) -> ShippingRate:
        """
        Internal cost of the cheapest courier for a delivery pincode.
        Never raises; failures come back as success=False with cost 0.
        """
        if not pincode or normalize_pincode(pincode) != pincode:
            return ShippingRate(success=False, error="Invalid delivery pincode")

        params = {
            "pickup_postcode": self.pickup_pincode,
            "delivery_postcode": pincode,
            "weight": weight or settings.default_shipment_weight,
            "length": settings.default_shipment_length,
            "breadth": settings.default_shipment_breadth,
            "height": settings.default_shipment_height,
            "cod": 1 if cod else 0,
        }

        try:
            data = await self._request("GET", "/external/courier/serviceability/", params=params)
        except (ShiprocketError, httpx.HTTPError, ValueError) as e:
            logger.error(f"Shipping rate lookup failed for {pincode}: {e}")
            return ShippingRate(success=False, error=str(e))

        couriers = (data.get("data") or {}).get("available_courier_companies") or []
        if not couriers:
            logger.warning(f"No couriers available for pincode {pincode}")
            return ShippingRate(success=False, error="No couriers available")

        def _cost(courier: Dict[str, Any]) -> float:
            return float(courier.get("freight_charge") or courier.get("rate") or 0)

        try:
            cheapest = min(couriers, key=_cost)
            cost = _cost(cheapest)
            if cod:
                cost += float(cheapest.get("cod_charges") or 0)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Unreadable courier rates for {pincode}: {e}")
            return ShippingRate(success=False, error=f"Unreadable courier rates: {e}")

        return ShippingRate(
            success=True,
            shipping_cost=cost,
            courier_name=cheapest.get("courier_name"),
            courier_company_id=cheapest.get("courier_company_id"),
            estimated_days=cheapest.get("estimated_delivery_days"),
        )

    async def check_serviceability(self, pincode: str) -> Serviceability:
        """Whether we can deliver to a pincode at all."""
        normalized = normalize_pincode(pincode)
        if not normalized:
            return Serviceability(serviceable=False, reason="Invalid pincode format")

        if normalized in settings.blocked_pincodes:
            return Serviceability(serviceable=False, reason="Pincode is blocked")

        eta = estimate_delivery_days(normalized)

        if self.has_credentials:
            try:
                data = await self._request(
                    "GET",
                    "/external/courier/serviceability/",
                    params={
                        "pickup_postcode": self.pickup_pincode,
                        "delivery_postcode": normalized,
                        "weight": settings.default_shipment_weight,
                        "cod": 0,
                    },
                )
                couriers = (data.get("data") or {}).get("available_courier_companies") or []
                if couriers:
                    return Serviceability(
                        serviceable=True,
                        available_couriers=[c.get("courier_name") or "Unknown" for c in couriers],
                        cod_available=any(c.get("cod") in (1, True) for c in couriers),
                        **eta,
                    )
            except (ShiprocketError, httpx.HTTPError, ValueError) as e:
                logger.error(f"Serviceability check failed for {normalized}: {e}")

        # Without a usable API answer only obviously bogus pincodes are refused
        if normalized in INVALID_PINCODES:
            return Serviceability(serviceable=False, reason="Invalid pincode pattern")

        return Serviceability(serviceable=True, **eta)

    async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create an adhoc order; the response carries shipment_id and courier details."""
        return await self._request("POST", "/external/orders/create/adhoc", json=payload)
