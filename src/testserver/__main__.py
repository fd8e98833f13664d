import sys

from testserver.cli import main

sys.exit(main())
