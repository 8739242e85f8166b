import sys

from tabulator.cli import main

sys.exit(main())
