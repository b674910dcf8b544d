import sys

from aues_sync.main import main

sys.exit(main())
