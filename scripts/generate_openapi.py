#!/usr/bin/env python3
import argparse
import json
import os
import sys
from pathlib import Path


def main() -> int:
    project_root = Path(__file__).resolve().parents[1]
    parser = argparse.ArgumentParser(description="Write the API's OpenAPI document to disk.")
    parser.add_argument(
        "--output",
        type=Path,
        default=project_root / "contracts" / "openapi.json",
        help="Destination file (default: contracts/openapi.json).",
    )
    args = parser.parse_args()

    sys.path.insert(0, str(project_root))

    os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
    os.environ.setdefault("SECRET_KEY", "contract-secret")

    from sportmatch.api import app  # noqa: PLC0415

    schema = app.openapi()
    out_path = args.output.resolve()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(schema, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")
    print(f"Wrote {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
