"""
Entry point for running the converter as a module.

Usage:
    python -m mbox_to_pdf [options] FOLDER...
    python -m mbox_to_pdf -o ./pdfs -A2 inbox.mbox
"""

import sys
from .cli import main

if __name__ == "__main__":
    sys.exit(main())
