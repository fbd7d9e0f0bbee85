from __future__ import annotations

import argparse
import json

from portal.core.config import ConfigFsPaths, ConfigManager


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the validated portal client configuration.")
    ap.add_argument("--root", default=".", help="Directory holding config/, secure/ and logs/.")
    args = ap.parse_args()

    cm = ConfigManager(fs=ConfigFsPaths(args.root), logger=None, read_only=True)
    cfg = cm.load_all()
    print(json.dumps(cfg.model_dump(), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
