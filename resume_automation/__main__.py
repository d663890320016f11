"""Allow running as: python -m resume_automation"""

import sys

from resume_automation.main import main

if __name__ == "__main__":
    main(sys.argv[1:])
