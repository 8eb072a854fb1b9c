import sys

from workspace_supervisor.main import main

sys.exit(main())
