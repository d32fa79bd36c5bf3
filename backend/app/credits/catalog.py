"""Static catalog mapping billing price identifiers to plan tiers."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Union

from .models import CreditPoolName

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a plan tier and its monthly allowance per credit pool."""

    tier: str
    allowed_ugc: int = 0
    allowed_faceless: int = 0

    def allowance(self, pool: CreditPoolName) -> int:
        return self.allowed_ugc if pool == CreditPoolName.UGC else self.allowed_faceless


DEFAULT_PLAN = PlanDefinition(tier="free")

STARTER = PlanDefinition(tier="starter", allowed_ugc=5, allowed_faceless=3)
PROFESSIONAL = PlanDefinition(tier="professional", allowed_ugc=20, allowed_faceless=10)
BUSINESS = PlanDefinition(tier="business", allowed_ugc=50, allowed_faceless=25)
SCALE = PlanDefinition(tier="scale", allowed_ugc=120, allowed_faceless=60)

# Monthly and annual prices for each tier.
DEFAULT_PRICE_TABLE: Dict[str, PlanDefinition] = {
    "price_1SXZ4TBEStw3HK5gLIRBc7mU": STARTER,
    "price_1SXZ5hBEStw3HK5gaahNKeNA": STARTER,
    "price_1SXZ4oBEStw3HK5g47Tp0opH": PROFESSIONAL,
    "price_1SXZ8UBEStw3HK5g9aWHhgjT": PROFESSIONAL,
    "price_1SXZ55BEStw3HK5gciuiffxs": BUSINESS,
    "price_1SXZ96BEStw3HK5gDvYT9yPE": BUSINESS,
    "price_1SXZ5IBEStw3HK5gl5n56R3M": SCALE,
    "price_1SXZ9hBEStw3HK5grxCvv0Qj": SCALE,
}


class PlanCatalog:
    """Immutable price-to-plan lookup built once at process start."""

    def __init__(
        self,
        plans: Mapping[str, PlanDefinition],
        *,
        default: PlanDefinition = DEFAULT_PLAN,
    ) -> None:
        self._plans: Mapping[str, PlanDefinition] = MappingProxyType(dict(plans))
        self._default = default

    def __contains__(self, price_id: object) -> bool:
        return price_id in self._plans

    def __iter__(self) -> Iterator[str]:
        return iter(self._plans)

    def __len__(self) -> int:
        return len(self._plans)

    @property
    def default(self) -> PlanDefinition:
        return self._default

    def resolve_tier(self, price_id: Optional[str]) -> PlanDefinition:
        """Return the plan for ``price_id``, degrading to the zero-allowance default."""

        if price_id and price_id in self._plans:
            return self._plans[price_id]
        logger.warning("Unknown price id %s, falling back to tier %s", price_id, self._default.tier)
        return self._default


def _plan_from_entry(price_id: str, entry: object) -> PlanDefinition:
    if not isinstance(entry, dict) or not entry.get("tier"):
        raise ValueError(f"Plan catalog entry for {price_id!r} must define a tier")
    allowed_ugc = int(entry.get("ugc", 0))
    allowed_faceless = int(entry.get("faceless", 0))
    if allowed_ugc < 0 or allowed_faceless < 0:
        raise ValueError(f"Plan catalog entry for {price_id!r} has a negative allowance")
    return PlanDefinition(
        tier=str(entry["tier"]),
        allowed_ugc=allowed_ugc,
        allowed_faceless=allowed_faceless,
    )


def load_plan_catalog(path: Optional[Union[str, Path]] = None) -> PlanCatalog:
    """Build the catalog from a JSON file, or from the built-in table when no path is given.

    The file maps price ids to ``{"tier": str, "ugc": int, "faceless": int}``.
    """

    if path is None:
        return PlanCatalog(DEFAULT_PRICE_TABLE)

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Plan catalog file must contain a JSON object")
    plans = {str(price_id): _plan_from_entry(str(price_id), entry) for price_id, entry in raw.items()}
    return PlanCatalog(plans)
