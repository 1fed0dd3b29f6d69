import sys

from stackindex.cli import main

sys.exit(main())
