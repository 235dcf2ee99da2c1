import sys

from devserve.main import main

sys.exit(main())
