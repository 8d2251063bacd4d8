import sys

from .sweeper_daemon import main

sys.exit(main())
