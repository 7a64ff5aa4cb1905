from __future__ import annotations

import base64
import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Union

import httpx
import requests
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..config import ScanSettings
from ..errors import ScanError, ScanParseError
from ..logging import get_logger

LOG = get_logger("scan-extraction")

DEFAULT_MAX_TOKENS = 4096
DEFAULT_MIME = "image/jpeg"


def _prompt() -> str:
    return """Analise esta imagem de uma nota fiscal/cupom fiscal de supermercado ou mercado brasileiro e extraia as seguintes informações em formato JSON:

1. "items": array de produtos com:
   - "name": nome do produto (limpo, sem códigos)
   - "quantity": quantidade (número, default 1)
   - "unit_price": preço unitário em reais (número decimal)
   - "total_price": preço total do item (número decimal)

2. "total_amount": valor total da compra em reais (número decimal)

3. "market": nome do estabelecimento/mercado (string ou null)

4. "payment_method": forma de pagamento identificada - pode ser: "Dinheiro", "Débito", "Crédito", "PIX", "VR", "VA" ou null se não identificado

5. "purchase_date": data da compra no formato "YYYY-MM-DD" ou null se não identificada

IMPORTANTE:
- Retorne APENAS o JSON válido, sem markdown ou texto adicional
- Use números decimais para preços (ex: 12.99, não "R$ 12,99")
- Se não conseguir identificar algum campo, use null
- Para itens, tente extrair o máximo possível mesmo que alguns campos estejam incompletos
- Ignore linhas que são códigos de barras, totais parciais, ou informações fiscais

Exemplo de resposta esperada:
{
  "items": [
    {"name": "Arroz 5kg", "quantity": 1, "unit_price": 25.90, "total_price": 25.90},
    {"name": "Feijão 1kg", "quantity": 2, "unit_price": 8.50, "total_price": 17.00}
  ],
  "total_amount": 42.90,
  "market": "Supermercado Extra",
  "payment_method": "Débito",
  "purchase_date": "2024-01-15"
}"""


def build_data_url(image: Union[bytes, str], mime_type: str = DEFAULT_MIME) -> str:
    """Wrap raw bytes or bare base64 into a ``data:`` URL; data URLs pass through."""
    if isinstance(image, bytes):
        b64 = base64.b64encode(image).decode("ascii")
        return f"data:{mime_type or DEFAULT_MIME};base64,{b64}"
    text = image.strip()
    if text.startswith("data:"):
        return text
    return f"data:{mime_type or DEFAULT_MIME};base64,{text}"


# ---------- JSON recovery ----------
def _extract_fenced_json(text: str) -> Optional[str]:
    """If the model wrapped JSON in ``` or ```json fences, return the inner content."""
    match = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if match and match.group(1):
        return match.group(1).strip()
    return None


def _first_balanced_object(text: str) -> Optional[str]:
    """Slice out the first top-level ``{...}``, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            ch = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : pos + 1]
        start = text.find("{", start + 1)
    return None


def _loads_object(candidate: Optional[str]) -> Optional[Dict[str, Any]]:
    if not candidate:
        return None
    try:
        value = json.loads(candidate)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Recover a JSON object from model output.

    Tries the whole text, then a fenced block, then the first balanced
    object; raises ScanParseError carrying the raw text when all fail.
    """
    if not text or not text.strip():
        raise ScanParseError("No response from AI", raw=text)
    for candidate in (text.strip(), _extract_fenced_json(text), _first_balanced_object(text)):
        data = _loads_object(candidate)
        if data is not None:
            return data
    LOG.error("Model output not valid JSON; first 500 chars: %r", text[:500])
    raise ScanParseError("Failed to parse receipt data", raw=text)


# ---------- payload normalization ----------
def _coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().replace("R$", "").replace(" ", "")
        if not cleaned:
            return None
        if "," in cleaned and "." in cleaned:
            cleaned = cleaned.replace(".", "")
        cleaned = cleaned.replace(",", ".")
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _coerce_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_date(value: Any) -> Optional[str]:
    text = _coerce_text(value)
    if not text:
        return None
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date().isoformat()
    except ValueError:
        LOG.debug("Ignoring unparseable purchase date %r", text)
        return None


@dataclass
class ScannedItem:
    name: str
    quantity: float = 1.0
    unit_price: float = 0.0
    total_price: float = 0.0

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "ScannedItem":
        quantity = _coerce_number(raw.get("quantity"))
        if quantity is None or quantity <= 0:
            quantity = 1.0
        unit_price = _coerce_number(raw.get("unit_price"))
        total_price = _coerce_number(raw.get("total_price"))
        if unit_price is None and total_price is not None:
            unit_price = total_price / quantity
        if unit_price is None:
            unit_price = 0.0
        if total_price is None:
            total_price = quantity * unit_price
        return cls(
            name=_coerce_text(raw.get("name")) or "Item",
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScannedReceipt:
    """Normalized model answer for one receipt image."""

    items: List[ScannedItem] = field(default_factory=list)
    total_amount: Optional[float] = None
    market: Optional[str] = None
    payment_method: Optional[str] = None
    purchase_date: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "ScannedReceipt":
        items = [ScannedItem.from_payload(i) for i in (raw.get("items") or []) if isinstance(i, dict)]
        return cls(
            items=items,
            total_amount=_coerce_number(raw.get("total_amount")),
            market=_coerce_text(raw.get("market")),
            payment_method=_coerce_text(raw.get("payment_method")),
            purchase_date=_coerce_date(raw.get("purchase_date")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------- scanners ----------
class ReceiptScanner(Protocol):
    def scan(self, data_url: str) -> ScannedReceipt:
        ...


def _messages(data_url: str) -> List[Dict[str, Any]]:
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": _prompt()},
                {"type": "image_url", "image_url": {"url": data_url}},
            ],
        }
    ]


class OpenRouterScanner:
    """Chat-completions call against OpenRouter (or any compatible gateway)."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str,
        endpoint: str,
        timeout: int = 120,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_tokens = max_tokens

    def complete(self, data_url: str) -> str:
        """Send the image and return the model's raw text answer."""
        if not self.api_key:
            raise ScanError("API key not configured")
        payload = {
            "model": self.model,
            "messages": _messages(data_url),
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        LOG.info("Processing receipt image with model %s", self.model)
        try:
            resp = requests.post(self.endpoint, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            LOG.error("Scan request failed: %s", exc)
            raise ScanError("Failed to process image with AI") from exc

        if resp.status_code >= 400:
            LOG.error("Scan HTTP %s: %s", resp.status_code, (resp.text or "")[:500])
            raise ScanError("Failed to process image with AI")

        try:
            body = resp.json()
        except ValueError as exc:
            raise ScanError("Failed to process image with AI") from exc
        if not isinstance(body, dict):
            LOG.error("Scan returned a non-object body: %s", str(body)[:500])
            raise ScanError("Failed to process image with AI")
        choices = body.get("choices") or []
        first = choices[0] if isinstance(choices, list) and choices else {}
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not content or not isinstance(content, str):
            LOG.error("Scan returned no content: %s", str(body)[:500])
            raise ScanError("No response from AI")
        LOG.info("AI response received")
        return content

    def scan(self, data_url: str) -> ScannedReceipt:
        receipt = ScannedReceipt.from_payload(extract_json_object(self.complete(data_url)))
        LOG.info(f"Receipt parsed: {len(receipt.items)} item(s), market={receipt.market!r}")
        return receipt


class OpenAIScanner:
    """Same request through the OpenAI SDK, on its own httpx client."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str,
        base_url: Optional[str] = None,
        timeout: int = 120,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_tokens = max_tokens

    def complete(self, data_url: str) -> str:
        if not self.api_key:
            raise ScanError("API key not configured")
        http_client = httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=float(self.timeout), write=30.0, pool=10.0),
        )
        client = OpenAI(api_key=self.api_key, base_url=self.base_url, http_client=http_client, max_retries=0)
        try:
            LOG.info("Calling chat completions (vision) model=%s", self.model)
            completion = client.chat.completions.create(
                model=self.model,
                messages=_messages(data_url),
                max_tokens=self.max_tokens,
            )
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling OpenAI: %s", exc)
            raise ScanError("Failed to process image with AI") from exc
        except APIStatusError as exc:
            body = getattr(getattr(exc, "response", None), "text", None)
            LOG.error("OpenAI API returned %s. Body preview: %r", exc.status_code, (body[:300] if body else None))
            raise ScanError("Failed to process image with AI") from exc
        finally:
            http_client.close()

        choice = completion.choices[0] if completion.choices else None
        content = choice.message.content if choice is not None and choice.message is not None else None
        if not content:
            raise ScanError("No response from AI")
        return content

    def scan(self, data_url: str) -> ScannedReceipt:
        return ScannedReceipt.from_payload(extract_json_object(self.complete(data_url)))


def _base_url(endpoint: str) -> Optional[str]:
    suffix = "/chat/completions"
    if endpoint and endpoint.endswith(suffix):
        return endpoint[: -len(suffix)]
    return endpoint or None


def build_scanner(settings: ScanSettings) -> ReceiptScanner:
    if settings.backend == "openai":
        return OpenAIScanner(
            settings.api_key,
            model=settings.model,
            base_url=_base_url(settings.endpoint),
            timeout=settings.timeout,
        )
    return OpenRouterScanner(
        settings.api_key,
        model=settings.model,
        endpoint=settings.endpoint,
        timeout=settings.timeout,
    )
