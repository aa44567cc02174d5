from __future__ import annotations

import argparse
import json

from unifiedauth.core.config import load_config
from unifiedauth.core.redaction import redact_value


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the effective auth config (secrets redacted).")
    ap.add_argument("--config", default="config/auth.json")
    args = ap.parse_args()
    cfg = load_config(args.config, write_defaults=False)
    print(json.dumps(redact_value(cfg.model_dump(mode="json")), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
