import sys

from unitrack.scanner.cli import main

sys.exit(main())
