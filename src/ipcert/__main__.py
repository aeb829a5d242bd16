import sys

from ipcert.cli import main

sys.exit(main())
