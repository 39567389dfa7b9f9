"""
Diagnostic: run the page fetcher + regex miner only (no LLM, no API key).
Reports which spec patterns match on each page and what the miner would
return as the Stage 2 fallback.

  python diagnostics.py https://seller-a.example/sheet https://seller-b.example/sheet
  python diagnostics.py data/*.html
"""

import asyncio
import sys
from pathlib import Path

from config import get_settings
from pages import fetch_all_pages, html_to_text
from spec_patterns import SPEC_PATTERNS, find_spec_values, heuristic_isqs, mine_specs


async def load_texts(sources: list[str]) -> list[str]:
    """Visible text for each source: http(s) URLs are fetched, anything else is read as a local HTML file."""
    urls = [s for s in sources if s.startswith(("http://", "https://"))]
    fetched = iter(await fetch_all_pages(urls, get_settings()))

    texts = []
    for source in sources:
        if source.startswith(("http://", "https://")):
            texts.append(next(fetched))
        else:
            texts.append(html_to_text(Path(source).read_text(encoding="utf-8")))
    return texts


def diagnose_page(source: str, text: str) -> dict:
    return {
        "source": source,
        "chars": len(text),
        "matches": find_spec_values(text),
    }


def main(argv: list[str] | None = None) -> None:
    sources = sys.argv[1:] if argv is None else argv
    if not sources:
        print(__doc__)
        return

    print(f"Diagnosing {len(sources)} page(s) (fetch + regex miner only, NO LLM)\n")
    texts = asyncio.run(load_texts(sources))

    all_reports = []
    for source, text in zip(sources, texts):
        report = diagnose_page(source, text)
        all_reports.append(report)

        print(f"{'=' * 70}")
        print(f"  {report['source']}")
        print(f"{'=' * 70}")

        if not report["chars"]:
            print("  EMPTY (fetch or parse failed)\n")
            continue
        print(f"  Text: {report['chars']} chars")

        if report["matches"]:
            print(f"\n  Matched ({len(report['matches'])}/{len(SPEC_PATTERNS)}):")
            for label, values in report["matches"].items():
                print(f"    {label}: {values}")
        else:
            print("\n  No spec patterns matched")
        print()

    # Summary table
    print(f"\n{'=' * 70}")
    print("SUMMARY: Pattern coverage across all pages")
    print(f"{'=' * 70}")
    print(f"{'Pattern':<20} ", end="")
    for i in range(len(all_reports)):
        print(f"{'page ' + str(i + 1):<10}", end="")
    print()
    print("-" * (21 + 10 * len(all_reports)))

    for pattern in SPEC_PATTERNS:
        print(f"{pattern.label:<20} ", end="")
        for r in all_reports:
            print(f"{'OK' if pattern.label in r['matches'] else '-':<10}", end="")
        print()

    print("\n── Mined ranking (2+ pages, 2+ values) ──")
    mined = mine_specs(texts)
    if not mined:
        print("  Nothing qualifies; Stage 2 would fall back to the default ISQs")
    for spec in mined:
        print(f"  {spec.label:<20} {spec.url_count} page(s)  {spec.options}")

    result = heuristic_isqs(texts)
    if result is not None:
        print("\n── Heuristic Stage 2 result ──")
        print(f"  Config: {result.config.name} {result.config.options}")
        for key in result.keys:
            print(f"  Key:    {key.name} {key.options}")


if __name__ == "__main__":
    main()
