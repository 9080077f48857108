#!/usr/bin/env python3
"""Run the segcrop CLI from a source checkout.

Examples:
  python scripts/segcrop.py segment -i page.png -p 120,80 300,40 -t 1 0 \
      --label char-nemo --caption "nemo, cartoon fish" --size 1024
  python scripts/segcrop.py build-manifest --prepared_dir dataset/prepared
"""

import sys

from segcrop.cli import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
