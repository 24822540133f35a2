import sys

from mapqld.cli import main

sys.exit(main())
