"""
Prompt builders for the three pipeline stages.

Stage 1 encodes the marketplace classification rules. Stage 2 has three
independently worded prompts (first / validation / fallback) so that a
failed extraction is re-asked with a different framing. Stage 3 asks the
model to pick buyer specs from the pre-computed common specs.
"""

import json

from models import CommonSpec, InputData

# ---------------------------------------------------------------------------
# Stage 1: tiered specification schema
# ---------------------------------------------------------------------------

_STAGE1_RULES = """\
RULES

1. Spec names
- Use the name most commonly used by sellers and buyers in the Indian B2B market.
- Never list two specs that mean the same thing; keep only the more common name.
- Every spec must be technically relevant and possible for the category.
- A spec that has only one option but matters for listings goes under Tertiary only
  (e.g. Extinguishing Agent: CO2 for "CO2 Fire Extinguisher").
- Related categories must use the same name for the same spec. Match on meaning, not
  wording, and prefer the simplest marketplace-friendly name (at most 2-3 words).

2. Tiers
- Primary (MIN 2, MAX 3): core differentiators with the highest impact on price and comparison.
- Secondary (MIN 2, MAX 3): essential functional specs that define capability and performance.
- Tertiary (MAX 4): supplementary details that answer detailed inquiries.

3. Input type
- "radio_button": one value from a fixed set of mutually exclusive values (Capacity: 2kg, 4kg, 6kg).
- "multi_select": several non-exclusive values may apply together (Features: Waterproof, GPS).

4. Options
- Order options by popularity in the Indian B2B market, most common first.
- Cover the options that together account for at least 95% of listings and inquiries.
- At most 10 options per spec; drop the long tail.
- Every option must be shorter than 25 characters.
- Avoid ranges unless a range is the industry standard for that spec.
- Keep one consistent format and one primary, legally standard unit per spec. A commonly
  spoken secondary unit may follow in parentheses, e.g. "2100 mm (7 ft)".
- No duplicate options, including the same value written two ways.
- No vague options such as "Custom", "Other" or "Unbranded".
- Options must fit the category and must not contradict the spec (Material: 100 kg is invalid).

5. Affix flags (PRIMARY specs only)
- affix_flag: "Prefix" (value goes at the start of the product title), "Suffix" (at the
  end) or "None" (not used in titles).
- affix_presence_flag: "1" to include name and value ("CO2 Fire Extinguisher Weight 4kg"),
  "0" for value only ("CO2 Fire Extinguisher 4kg") and always "0" when affix_flag is "None".
- SECONDARY and TERTIARY specs must have affix_flag "None" and affix_presence_flag "0".
"""

_STAGE1_SCHEMA = """\
{
  "seller_specs": [
    {
      "pmcat_id": "<PMCAT ID>",
      "pmcat_name": "<PMCAT NAME>",
      "mcats": [
        {
          "category_name": "<MCAT NAME FROM LIST>",
          "mcat_id": "<MCAT ID FROM LIST>",
          "finalized_specs": {
            "finalized_primary_specs": {"specs": [
              {"spec_name": "<string>", "options": ["<val1>", "<val2>"],
               "input_type": "radio_button", "affix_flag": "Suffix", "affix_presence_flag": "1"}
            ]},
            "finalized_secondary_specs": {"specs": [
              {"spec_name": "<string>", "options": ["<val1>", "<val2>"],
               "input_type": "radio_button", "affix_flag": "None", "affix_presence_flag": "0"}
            ]},
            "finalized_tertiary_specs": {"specs": []}
          }
        }
      ]
    }
  ]
}"""


def build_stage1_prompt(data: InputData) -> str:
    """Prompt asking for a tiered spec schema for every MCAT in the input."""
    mcat_lines = "\n".join(f"- {m.mcat_name or '(blank)'} (ID: {m.mcat_id or '(blank)'})" for m in data.mcats)
    categories = ", ".join([data.pmcat_name] + data.mcat_names if data.pmcat_name else data.mcat_names)

    return f"""For the product categories {{ {categories} }}, identify the key product \
specifications from an Indian B2B marketplace perspective.

PMCAT Name: {data.pmcat_name or "(blank)"}
PMCAT ID: {data.pmcat_id or "(blank)"}
MCAT LIST:
{mcat_lines}

{_STAGE1_RULES}
OUTPUT
- Return ONE JSON object only: no markdown, no code fences, no text before or after it.
- Include EVERY MCAT from the MCAT LIST exactly once, no missing MCATs and no extras.
- Copy each category_name and mcat_id exactly as listed. Do not invent or renumber IDs.
- Match this schema exactly:

{_STAGE1_SCHEMA}"""


# ---------------------------------------------------------------------------
# Stage 2: ISQ extraction from seller pages
# ---------------------------------------------------------------------------

_STAGE2_SCHEMA = '{"config": {"name": "...", "options": ["..."]}, "keys": [{"name": "...", "options": ["..."]}]}'

_STAGE2_SCHEMA_WITH_BUYERS = (
    '{"config": {"name": "...", "options": ["..."]}, '
    '"keys": [{"name": "...", "options": ["..."]}, ...], '
    '"buyers": [{"name": "...", "options": ["..."]}, ...]}'
)


def _pages_block(urls: list[str], texts: list[str], max_chars: int) -> str:
    blocks = []
    for i, (url, text) in enumerate(zip(urls, texts), start=1):
        body = text[:max_chars] if text else "(page could not be fetched)"
        blocks.append(f"URL {i}: {url}\nContent: {body}")
    return "\n\n".join(blocks) if blocks else "(no seller pages available)"


def build_first_prompt(data: InputData, urls: list[str], texts: list[str], max_chars: int = 4000) -> str:
    """Detailed extraction prompt. Also asks for two buyer ISQs."""
    categories = ", ".join(data.mcat_names) or data.pmcat_name

    return f"""Extract ISQs (Item Specification Questions) from these seller pages for: {categories}

{_pages_block(urls, texts, max_chars)}

Extract:
1. CONFIG ISQ (exactly 1): the specification that most influences price. Its options must
   match values written on the pages.
2. KEY ISQs (exactly 3): the most repeated, category-defining specifications.
3. BUYER ISQs (exactly 2): what buyers filter on. One must have the same name as the
   CONFIG ISQ. No multi-select specs.

STRICT RULES
- Do not invent specs. Extract only specs that appear in AT LEAST 2 pages.
- If a spec appears on only one page, ignore it.
- When options differ between pages, keep only options that appear on at least 2 pages.
- Every ISQ needs at least 2 options. Do not guess missing options.
- Config and key ISQs must all have different names.
- If a spec is already part of the category name (e.g. "Material" in "Steel Sheet"), skip it.

Return ONLY valid JSON, starting with {{ and ending with }}, exactly like:
{_STAGE2_SCHEMA_WITH_BUYERS}"""


def build_validation_prompt(data: InputData, urls: list[str], texts: list[str], max_chars: int = 4000) -> str:
    """Stricter re-derivation used when the first answer failed validation."""
    categories = ", ".join(data.mcat_names) or data.pmcat_name

    return f"""You are auditing product specification data for the category: {categories}

Below is the visible text of {len(urls)} seller pages.

{_pages_block(urls, texts, max_chars)}

Work through these steps silently, then answer with JSON only:
1. List every specification name that is written on two or more pages.
2. Merge names that mean the same thing (e.g. "Thk" and "Thickness") into one name.
3. For each remaining specification, keep the values seen on the pages. Drop values you
   cannot find in the text.
4. Pick the ONE specification that most changes the price: this is "config".
5. Pick the next THREE most frequent specifications: these are "keys".

Hard requirements (the answer is rejected otherwise):
- "config" has a non-empty name and at least 2 options.
- "keys" has exactly 3 entries, each with at least 2 options.
- No two of the four names may mean the same thing.

Output format (JSON only, no markdown):
{_STAGE2_SCHEMA}"""


def build_fallback_prompt(data: InputData, urls: list[str], texts: list[str], max_chars: int = 4000) -> str:
    """Minimal prompt, last model attempt before the regex miner."""
    categories = ", ".join(data.mcat_names) or data.pmcat_name
    short = max(500, max_chars // 2)

    return f"""Product category: {categories}

Seller page text:
{_pages_block(urls, texts, short)}

Give 1 config spec (affects price) and 3 key specs for this product, each with 2 to 8
common values. Names must be different. JSON only:
{_STAGE2_SCHEMA}"""


# ---------------------------------------------------------------------------
# Stage 3: buyer ISQ selection
# ---------------------------------------------------------------------------


def build_buyer_prompt(common_specs: list[CommonSpec]) -> str:
    """Ask the model to choose up to two buyer ISQs from the common specs."""
    specs_json = json.dumps(
        [
            {
                "spec_name": c.spec_name,
                "tier": c.tier.value,
                "is_price_config": c.is_config,
                "model_options": c.stage1_options,
                "website_options": c.stage2_options,
            }
            for c in common_specs
        ],
        indent=2,
        ensure_ascii=False,
    )

    return f"""These specifications were both generated for the category and found on seller pages:

{specs_json}

Choose AT MOST 2 specifications to show to buyers.
- Prefer Primary over Secondary over Tertiary.
- Use spec_name exactly as given. Do not invent new specifications.
- For each chosen spec, list options in this order: options present in both model_options
  and website_options first, then website-only options, then model-only options.
- No duplicate options, at most 8 options per spec.

Return JSON only:
{{"buyers": [{{"name": "...", "options": ["..."]}}]}}"""
