import sys

from rig_workspace.cli import main

sys.exit(main())
