"""AI collaborator that proposes AHS breakdowns and single component prices.

The resolver only depends on the ``BreakdownGenerator`` protocol; the OpenAI
adapter below is the production implementation.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from django.conf import settings
from openai import AsyncOpenAI, OpenAIError

from rab_items.models import Component, ComponentSource, DEFAULT_COMPONENT_CATEGORY
from rab_items.utils.decimal_adapter import DecimalAdapter

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
GENERATED_COMPONENT_CATEGORY = "Lainnya"

BREAKDOWN_INSTRUCTION = (
    "Anda adalah AI estimasi biaya konstruksi ahli untuk wilayah Jabodetabek, Indonesia. "
    "Buat Analisa Harga Satuan (AHS) untuk satu jenis pekerjaan konstruksi. "
    "Fokus pada komponen utama: Material, Jasa Pekerja, dan Alat Bantu. "
    "Kuantitas harus sesuai untuk menyelesaikan 1 satuan pekerjaan. "
    'Keluarkan HANYA objek JSON dengan skema {"components": [{"componentName": string, '
    '"quantity": number, "unit": string, "unitPrice": number, "category": string}]}. '
    "Harga dalam Rupiah tanpa pemisah ribuan. Jika tidak dapat membuat AHS, kembalikan "
    '{"components": []}.'
)

SINGLE_PRICE_INSTRUCTION = (
    "You are a construction cost estimator AI for Indonesia. Given a component name, "
    "provide its estimated unit price in IDR, its standard unit and its category "
    "('Material', 'Jasa Pekerja', 'Alat Bantu') for the Jabodetabek region. "
    'Respond ONLY with a JSON object {"unitPrice": number, "unit": string, "category": string}. '
    "If you cannot determine the price, return zero for the price."
)


class GenerationFailed(Exception):
    """The AI collaborator errored, timed out or returned something unusable."""


@dataclass(frozen=True)
class SinglePriceEstimate:
    unit_price: Decimal
    unit: str
    category: str


class BreakdownGenerator(Protocol):
    async def generate_breakdown(self, description: str) -> List[Component]:
        """Return AHS components for one unit of work; empty means no estimate."""

    async def generate_single_price(self, component_name: str) -> SinglePriceEstimate:
        """Return an estimated price, unit and category for one component."""


def _load_json(raw: Any, *, context: str) -> Dict[str, Any]:
    if isinstance(raw, list):
        raw = "".join(str(part.get("text", "")) if isinstance(part, dict) else str(part) for part in raw)
    text = (raw or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                pass
    logger.warning("Unparseable %s response from AI: %.200s", context, text)
    raise GenerationFailed(f"Respons AI untuk {context} bukan JSON yang valid.")


def usable_components(components: Iterable[Component]) -> List[Component]:
    """Drop components with a negative coefficient or price."""
    kept: List[Component] = []
    dropped: List[str] = []
    for component in components:
        if component.quantity < 0 or component.unit_price < 0:
            dropped.append(component.name)
        else:
            kept.append(component)
    if dropped:
        logger.warning("Ignoring AI component(s) with negative values: %s", ", ".join(dropped))
    return kept


def parse_components(payload: Any) -> List[Component]:
    """Turn the model's ``components`` list into ``Component`` records sourced from AI.

    Unreadable numbers become zero; rows with negative values are dropped.
    """
    rows = payload.get("components") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise GenerationFailed("Format AHS dari AI tidak valid, diharapkan daftar komponen.")

    stamp = uuid.uuid4().hex[:8]
    components: List[Component] = []
    for position, row in enumerate(rows):
        if not isinstance(row, dict):
            continue
        components.append(
            Component(
                id=f"ahs-gen-{stamp}-{position}",
                name=str(row.get("componentName") or row.get("name") or ""),
                category=str(row.get("category") or GENERATED_COMPONENT_CATEGORY),
                quantity=DecimalAdapter.to_decimal(row.get("quantity")) or ZERO,
                unit=str(row.get("unit") or ""),
                unit_price=DecimalAdapter.to_decimal(row.get("unitPrice")) or ZERO,
                source=ComponentSource.AI,
            )
        )
    return usable_components(components)


def parse_single_price(payload: Any) -> SinglePriceEstimate:
    if not isinstance(payload, dict):
        raise GenerationFailed("Format harga dari AI tidak valid.")
    return SinglePriceEstimate(
        unit_price=DecimalAdapter.to_decimal(payload.get("unitPrice")) or ZERO,
        unit=str(payload.get("unit") or ""),
        category=str(payload.get("category") or DEFAULT_COMPONENT_CATEGORY),
    )


class OpenAIBreakdownGenerator:
    """``BreakdownGenerator`` backed by the OpenAI chat completions API."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self.model = model or settings.RAB_EDITOR["AI_MODEL"]

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self._api_key or getattr(settings, "OPENAI_API_KEY", "")
            if not api_key:
                raise GenerationFailed("OPENAI_API_KEY belum diatur.")
            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    async def _complete_json(self, system: str, prompt: str, *, temperature: float, context: str) -> Dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                temperature=temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as exc:
            logger.exception("OpenAI request for %s failed", context)
            raise GenerationFailed(f"Gagal menghubungi AI untuk {context}.") from exc

        return _load_json(response.choices[0].message.content, context=context)

    async def generate_breakdown(self, description: str) -> List[Component]:
        payload = await self._complete_json(
            BREAKDOWN_INSTRUCTION,
            f'Buatkan Analisa Harga Satuan (AHS) untuk pekerjaan berikut: "{description}"',
            temperature=0.4,
            context="ahs",
        )
        return parse_components(payload)

    async def generate_single_price(self, component_name: str) -> SinglePriceEstimate:
        payload = await self._complete_json(
            SINGLE_PRICE_INSTRUCTION,
            f'Provide cost estimation for: "{component_name}"',
            temperature=0.3,
            context="single_price",
        )
        return parse_single_price(payload)


async def generate_breakdown_with_timeout(
    generator: BreakdownGenerator,
    description: str,
    timeout: Optional[float],
) -> Tuple[Component, ...]:
    """Run one generation; errors and timeouts surface as ``GenerationFailed``."""
    try:
        components = await asyncio.wait_for(generator.generate_breakdown(description), timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("AHS generation for %r timed out after %ss", description, timeout)
        raise GenerationFailed(f"Pembuatan AHS untuk '{description}' melebihi batas waktu.") from exc
    return tuple(usable_components(components or ()))


def default_generator() -> OpenAIBreakdownGenerator:
    return OpenAIBreakdownGenerator()


def generation_timeout() -> float:
    return float(settings.RAB_EDITOR.get("GENERATION_TIMEOUT_SECONDS", 45))
