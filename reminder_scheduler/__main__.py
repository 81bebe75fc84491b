import sys

from reminder_scheduler.main import main

sys.exit(main())
