import sys

from localthumbs.cli import main

sys.exit(main())
