import sys

from callmap.cli import main

sys.exit(main())
