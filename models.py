from collections.abc import Iterator
from enum import Enum
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

from normalize import dedupe_options

# Canonical spellings for values the model returns in assorted cases.
# Maps raw value (lowercased) -> canonical value.
_INPUT_TYPE_ALIASES = {
    "radio_button": "radio_button",
    "radio": "radio_button",
    "radio button": "radio_button",
    "single_select": "radio_button",
    "single select": "radio_button",
    "multi_select": "multi_select",
    "multiselect": "multi_select",
    "multi select": "multi_select",
    "multi-select": "multi_select",
    "checkbox": "multi_select",
}

_AFFIX_ALIASES = {
    "none": "None",
    "null": "None",
    "": "None",
    "prefix": "Prefix",
    "suffix": "Suffix",
}

MAX_SPEC_OPTIONS = 10
MAX_BUYER_OPTIONS = 8


class Tier(str, Enum):
    PRIMARY = "Primary"
    SECONDARY = "Secondary"
    TERTIARY = "Tertiary"

    @property
    def rank(self) -> int:
        """0 for Primary, 1 for Secondary, 2 for Tertiary."""
        return list(Tier).index(self)


# ---------------------------------------------------------------------------
# Pipeline input
# ---------------------------------------------------------------------------


class MCAT(BaseModel):
    """A child market category, the unit specs are generated for."""

    mcat_name: str = ""
    mcat_id: str | int = ""

    @field_validator("mcat_name", mode="before")
    @classmethod
    def strip_name(cls, v: object) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("mcat_id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> str | int:
        return _id_or_blank(v)

    @property
    def is_blank(self) -> bool:
        return not self.mcat_name and not str(self.mcat_id).strip()


class InputData(BaseModel):
    pmcat_name: str = ""
    pmcat_id: str = ""
    mcats: list[MCAT]
    urls: list[str] = []

    @field_validator("pmcat_id", mode="before")
    @classmethod
    def coerce_pmcat_id(cls, v: object) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("mcats")
    @classmethod
    def require_mcat(cls, v: list[MCAT]) -> list[MCAT]:
        filled = [m for m in v if not m.is_blank]
        if not filled:
            raise ValueError("At least one MCAT with name or ID is required")
        return filled

    @field_validator("urls")
    @classmethod
    def validate_urls(cls, v: list[str]) -> list[str]:
        urls = [u.strip() for u in v if u and u.strip()]
        for idx, url in enumerate(urls, start=1):
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"Invalid URL at position {idx}: {url}")
        return urls

    @property
    def mcat_names(self) -> list[str]:
        return [m.mcat_name for m in self.mcats if m.mcat_name]


# ---------------------------------------------------------------------------
# Stage 1: tiered specification tree
# ---------------------------------------------------------------------------


class Spec(BaseModel):
    """A specification with popularity-ordered options."""

    spec_name: str
    options: list[str] = []
    input_type: Literal["radio_button", "multi_select"] = "radio_button"
    affix_flag: Literal["None", "Prefix", "Suffix"] = "None"
    affix_presence_flag: Literal["0", "1"] = "0"

    @field_validator("spec_name", mode="before")
    @classmethod
    def strip_spec_name(cls, v: object) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("options", mode="before")
    @classmethod
    def clean_options(cls, v: object) -> list[str]:
        if isinstance(v, str):
            v = v.split(",")
        return dedupe_options(v)  # model output is not guaranteed unique

    @field_validator("input_type", mode="before")
    @classmethod
    def normalize_input_type(cls, v: object) -> str:
        return _INPUT_TYPE_ALIASES.get(str(v or "").strip().lower(), "radio_button")

    @field_validator("affix_flag", mode="before")
    @classmethod
    def normalize_affix_flag(cls, v: object) -> str:
        return _AFFIX_ALIASES.get(str(v if v is not None else "").strip().lower(), "None")

    @field_validator("affix_presence_flag", mode="before")
    @classmethod
    def normalize_presence(cls, v: object) -> str:
        if isinstance(v, bool):
            return "1" if v else "0"
        return "1" if str(v).strip() == "1" else "0"


def _id_or_blank(v: object) -> str | int:
    if v is None:
        return ""
    return v if isinstance(v, (str, int)) and not isinstance(v, bool) else str(v)


class SpecList(BaseModel):
    specs: list[Spec] = []

    @model_validator(mode="before")
    @classmethod
    def accept_bare_list(cls, data: object) -> object:
        # Some responses drop the {"specs": [...]} wrapper
        if isinstance(data, list):
            return {"specs": data}
        if data is None:
            return {}
        return data

    @field_validator("specs", mode="before")
    @classmethod
    def drop_unnamed(cls, v: object) -> list:
        if not isinstance(v, list):
            return []
        return [s for s in v if not isinstance(s, dict) or str(s.get("spec_name") or "").strip()]


class FinalisedSpecs(BaseModel):
    finalized_primary_specs: SpecList = Field(default_factory=SpecList)
    finalized_secondary_specs: SpecList = Field(default_factory=SpecList)
    finalized_tertiary_specs: SpecList = Field(default_factory=SpecList)

    def by_tier(self) -> Iterator[tuple[Tier, list[Spec]]]:
        """Yield (tier, specs) in Primary, Secondary, Tertiary order."""
        yield Tier.PRIMARY, self.finalized_primary_specs.specs
        yield Tier.SECONDARY, self.finalized_secondary_specs.specs
        yield Tier.TERTIARY, self.finalized_tertiary_specs.specs


class MCATSpec(BaseModel):
    category_name: str = ""
    mcat_id: str | int = ""
    finalized_specs: FinalisedSpecs = Field(default_factory=FinalisedSpecs)

    @field_validator("category_name", mode="before")
    @classmethod
    def coerce_category_name(cls, v: object) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("mcat_id", mode="before")
    @classmethod
    def coerce_mcat_id(cls, v: object) -> str | int:
        return _id_or_blank(v)


class SellerSpec(BaseModel):
    pmcat_id: str | int = ""
    pmcat_name: str = ""
    mcats: list[MCATSpec] = []

    @field_validator("pmcat_id", mode="before")
    @classmethod
    def coerce_pmcat_id(cls, v: object) -> str | int:
        return _id_or_blank(v)

    @field_validator("pmcat_name", mode="before")
    @classmethod
    def coerce_pmcat_name(cls, v: object) -> str:
        return str(v).strip() if v is not None else ""


class Stage1Output(BaseModel):
    seller_specs: list[SellerSpec] = []

    def iter_specs(self) -> Iterator[tuple[MCATSpec, Tier, Spec]]:
        """Yield every (mcat, tier, spec) across all PMCATs, MCATs and tiers."""
        for seller in self.seller_specs:
            for mcat in seller.mcats:
                for tier, specs in mcat.finalized_specs.by_tier():
                    for spec in specs:
                        yield mcat, tier, spec

    @property
    def is_empty(self) -> bool:
        return not any(True for _ in self.iter_specs())


# ---------------------------------------------------------------------------
# Stage 2 / Stage 3: ISQs
# ---------------------------------------------------------------------------


class ISQ(BaseModel):
    """Item Specification Question tagged by role."""

    name: str
    options: list[str] = []
    type: Literal["config", "key", "buyer"] = "key"

    @field_validator("name", mode="before")
    @classmethod
    def strip_isq_name(cls, v: object) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("options", mode="before")
    @classmethod
    def clean_isq_options(cls, v: object) -> list[str]:
        return dedupe_options(v)


Stage2Source = Literal["first", "validation", "fallback", "heuristic", "default"]


class Stage2Result(BaseModel):
    """One config ISQ and three key ISQs extracted from seller pages."""

    config: ISQ
    keys: list[ISQ]
    # Only populated by the first prompt (direct buyer generation variant)
    buyers: list[ISQ] = []
    source: Stage2Source = "first"

    @model_validator(mode="after")
    def tag_roles(self) -> "Stage2Result":
        self.config.type = "config"
        for key in self.keys:
            key.type = "key"
        for buyer in self.buyers:
            buyer.type = "buyer"
        return self


class CommonSpec(BaseModel):
    """A spec present (by match key) in both Stage 1 and Stage 2 output."""

    spec_name: str
    tier: Tier
    input_type: str = "radio_button"
    stage1_options: list[str] = []
    stage2_options: list[str] = []
    match_key: str
    is_config: bool = False


class ComparisonResult(BaseModel):
    common_specs: list[str] = Field(default_factory=list)
    unique_to_a: list[str] = Field(default_factory=list)
    unique_to_b: list[str] = Field(default_factory=list)
