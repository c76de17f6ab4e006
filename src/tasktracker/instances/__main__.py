import sys

from tasktracker.instances.cli import main

sys.exit(main())
