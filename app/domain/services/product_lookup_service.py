"""
POIZON Product Lookup - client for the extract-spu / get-product-data microservices

The marketplace share text mixes a short link with Chinese promotional text,
for example:

    【得物】得物er-0Y3B7W6D发现一件好物， 1 CZ1111 https://dw4.co/t/A/1sHU86GGg Nike Air Max 97

``extract_product_url`` pulls the link out; ``ProductLookupClient`` turns it
into a validated ``ProductSnapshot``.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from app.core.circuit_breaker import get_poizon_circuit_breaker
from app.core.exceptions import InvalidProductDataError, ProductLookupError
from app.core.logging import get_logger

logger = get_logger(__name__)

# printable ASCII only: the link ends at the first space or non-Latin character
_URL_RE = re.compile(r"https?://[\x21-\x7e]+", re.IGNORECASE)

_USER_AGENT = "SQUARE-Bot/1.0"


def extract_product_url(text: str) -> Optional[str]:
    """First http(s) link in ``text``, or None"""
    match = _URL_RE.search(text or "")
    return match.group(0) if match else None


class ProductVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    price: Decimal
    available: bool = True
    size_label: str = "N/A"


class ProductSnapshot(BaseModel):
    """Denormalised product details kept in the session and on a calculation"""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    spu: str
    image_url: Optional[str] = None
    variants: list[ProductVariant]

    def available_variants(self) -> list[ProductVariant]:
        """In-stock variants, in the order the lookup service returned them"""
        return [v for v in self.variants if v.available]

    def find_variant(self, variant_id: str) -> Optional[ProductVariant]:
        return next((v for v in self.variants if v.id == variant_id), None)

    def to_blob(self) -> dict[str, Any]:
        """JSON-safe dict for session context and the calculation blob"""
        return self.model_dump(mode="json")


def _size_label(raw_variant: dict[str, Any]) -> str:
    if raw_variant.get("option2"):
        return str(raw_variant["option2"])
    for option in raw_variant.get("options") or []:
        if isinstance(option, dict) and option.get("name") == "Size" and option.get("value"):
            return str(option["value"])
    return "N/A"


def _normalize_image(src: Optional[str]) -> Optional[str]:
    if not src:
        return None
    return f"https:{src}" if src.startswith("//") else src


def parse_product_payload(product: Any) -> ProductSnapshot:
    """
    Validate a raw ``product`` object from get-product-data.

    Raises:
        InvalidProductDataError: a required field is missing, the variant list
            is empty or malformed, or a variant price is not a positive number
    """
    if not isinstance(product, dict):
        raise InvalidProductDataError("payload is not an object")

    for field in ("id", "title", "spu"):
        if not product.get(field):
            raise InvalidProductDataError(f"missing '{field}'", details={"field": field})

    raw_variants = product.get("variants")
    if not isinstance(raw_variants, list) or not raw_variants:
        raise InvalidProductDataError("no variants", details={"spu": str(product["spu"])})

    variants = []
    for raw in raw_variants:
        if not isinstance(raw, dict) or not raw.get("id") or raw.get("price") in (None, ""):
            raise InvalidProductDataError("malformed variant", details={"spu": str(product["spu"])})
        try:
            price = Decimal(str(raw["price"]))
        except InvalidOperation:
            price = Decimal("NaN")
        if not price.is_finite() or price <= 0:
            raise InvalidProductDataError(
                "non-positive variant price",
                details={"variant_id": str(raw["id"]), "price": str(raw["price"])},
            )
        variants.append(
            ProductVariant(
                id=str(raw["id"]),
                price=price,
                available=bool(raw.get("available", True)),
                size_label=_size_label(raw),
            )
        )

    image = product.get("image")
    image_src = image.get("src") if isinstance(image, dict) else None

    return ProductSnapshot(
        id=str(product["id"]),
        title=str(product["title"]),
        spu=str(product["spu"]),
        image_url=_normalize_image(image_src),
        variants=variants,
    )


class ProductLookupClient:
    """HTTP client for the two lookup microservices, behind a circuit breaker"""

    def __init__(
        self,
        extract_url: str,
        details_url: str,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.extract_url = extract_url
        self.details_url = details_url
        self.timeout_seconds = timeout_seconds
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"User-Agent": _USER_AGENT},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, operation: str, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        async def _call() -> dict[str, Any]:
            try:
                response = await self._client.post(url, json=payload)
            except httpx.HTTPError as e:
                raise ProductLookupError(
                    f"{operation} request failed: {type(e).__name__}",
                    details={"operation": operation},
                ) from e
            if response.status_code != 200:
                raise ProductLookupError.from_response(operation, response)
            try:
                body = response.json()
            except ValueError as e:
                raise ProductLookupError(f"{operation} returned invalid JSON") from e
            if not isinstance(body, dict):
                raise ProductLookupError(f"{operation} returned a non-object body")
            return body

        return await get_poizon_circuit_breaker().execute(_call)

    async def resolve_reference(self, url: str) -> Optional[str]:
        """SPU id for a share link, or None when the service cannot resolve it"""
        body = await self._post("extract-spu", self.extract_url, {"url": url})
        spu_id = body.get("spu_id")
        if body.get("success") and spu_id:
            logger.info("SPU extracted", extra_data={"spu_id": str(spu_id), "url": url[:50]})
            return str(spu_id)

        logger.warning("SPU extraction failed", extra_data={"error": body.get("error"), "url": url[:50]})
        return None

    async def fetch_details(self, spu_id: str) -> Optional[ProductSnapshot]:
        """
        Validated product for an SPU id, or None when the service has no data.

        Raises:
            InvalidProductDataError: the service answered with a malformed product
            ProductLookupError: transport failure or non-200 answer
        """
        body = await self._post("get-product-data", self.details_url, {"spu_id": spu_id})
        product = body.get("product")
        if not body.get("success") or not product:
            logger.warning("Product data unavailable", extra_data={"spu_id": spu_id, "error": body.get("error")})
            return None

        snapshot = parse_product_payload(product)
        logger.info(
            "Product data retrieved",
            extra_data={"spu_id": spu_id, "title": snapshot.title, "variants": len(snapshot.variants)},
        )
        return snapshot

    async def health_check(self) -> bool:
        """True when the extract service answers at all"""
        try:
            response = await self._client.get(self.extract_url.rsplit("/", 1)[0] + "/health", timeout=5.0)
        except httpx.HTTPError:
            return False
        return response.status_code < 500
