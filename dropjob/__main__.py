import sys

from dropjob.cli import main

sys.exit(main())
