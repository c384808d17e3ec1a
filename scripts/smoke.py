# scripts/smoke.py
"""
Smoke test against the real text-generation service.

Runs both stages for one prompt and prints what each produced: when the
narrative guide surfaced, whether the instructions parsed, the document size
and its structural check.

Usage
-----
    $ python scripts/smoke.py
    $ python scripts/smoke.py --prompt "Show vector addition visually using arrows"
    $ python scripts/smoke.py --out artifacts/smoke.html
"""

import argparse
import logging
import sys
import time
import traceback
from pathlib import Path

from dotenv import load_dotenv

from textviz.core.contracts.instructions import InstructionDocument, NarrativeGuide
from textviz.pipelines.text_to_visualization import run_generation

# --------------------------------------------------------------------------- #
# Environment Setup
# --------------------------------------------------------------------------- #
env_path = Path(".env")
if env_path.exists():
    load_dotenv(env_path)
    print("✅ Loaded .env file")
else:
    print("⚠️  Warning: No .env file found! Set GOOGLE_GENERATIVE_AI_API_KEY first.")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

DEFAULT_PROMPT = "Demonstrate bubble sort with colored bars"


def main() -> None:
    """Execute the smoke test workflow."""
    parser = argparse.ArgumentParser(description="Run a textviz smoke generation")
    parser.add_argument("--prompt", "-p", default=DEFAULT_PROMPT)
    parser.add_argument("--out", "-o", type=Path, default=None, help="Write the HTML here")
    args = parser.parse_args()

    started = time.monotonic()
    surfaced_at: list[float] = []

    def on_guide(guide: NarrativeGuide) -> None:
        surfaced_at.append(time.monotonic() - started)
        print(f"\n🗣️  Narrative guide surfaced: {len(guide.steps)} steps")

    try:
        result = run_generation(args.prompt, on_narrative_guide=on_guide)
    except Exception as exc:
        print(f"\n❌ Generation Crashed: {exc}")
        traceback.print_exc()
        return

    elapsed = time.monotonic() - started
    print("\n" + "=" * 60)
    print(f"✅ Generation finished in {elapsed:.1f}s")
    print("=" * 60)

    if surfaced_at:
        print(f"\n⏱️  Guide surfaced after {surfaced_at[0]:.1f}s")

    data = result["instructions_data"]
    if data is None:
        print(f"\n⚠️  Instructions did not parse: {result['decode_error']}")
    else:
        doc = InstructionDocument.model_validate(data)
        print(f"\n🎬 Scene: {doc.scene.title!r}")
        print(f"  - objects: {len(doc.objects)} ({', '.join(sorted(doc.object_types()))})")
        print(f"  - animations: {len(doc.animations)}, ~{doc.total_duration_ms() / 1000:.1f}s")

    print(f"\n📄 HTML: {len(result['code'])} chars")
    print(f"  - structural check: {'ok' if result['warning'] is None else result['warning']}")

    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(result["code"], encoding="utf-8")
        print(f"\n💾 Saved to: {args.out}")


if __name__ == "__main__":
    main()
