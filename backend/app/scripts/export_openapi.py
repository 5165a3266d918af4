from __future__ import annotations

import json
import sys
from pathlib import Path

from backend.app.main import app

DEFAULT_OUTPUT_PATH = Path("openapi") / "brand-monitor.json"


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    schema_path = Path(args[0]) if args else DEFAULT_OUTPUT_PATH
    schema_path.parent.mkdir(parents=True, exist_ok=True)
    schema_path.write_text(json.dumps(app.openapi(), indent=2, sort_keys=True), encoding="utf-8")
    print(f"Wrote OpenAPI schema to {schema_path}")


if __name__ == "__main__":
    main()
