import sys

from smoldev.main import main

sys.exit(main())
