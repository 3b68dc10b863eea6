import sys

from guardcache.cli import main

sys.exit(main())
