from pathlib import Path
import sys

from dotenv import load_dotenv

# Ensure the src directory is on sys.path when running as a script
_SRC_DIR = Path(__file__).resolve().parents[1]
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from townkeep.bootstrap import configure_logging
from townkeep.infrastructure.db.provision import main as provision_main


def main() -> int:
    load_dotenv()
    configure_logging()
    try:
        return provision_main()
    except KeyboardInterrupt:
        print("\nProvisioning interrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
