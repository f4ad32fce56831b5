#main.py

"""
fswatcher - polling file system change detector
"""
import sys

from fswatcher.app import main

if __name__ == "__main__":
    sys.exit(main())
