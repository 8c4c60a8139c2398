import sys

from obsput.cli import main

sys.exit(main())
