"""
Entry Point Script (Bootstrap)
==============================
Runs the command line interface straight from a source checkout.

Why is this file needed?
------------------------
1. It is located outside the 'src' package to act as a convenient runner.
2. It modifies 'sys.path' so 'from spatialevents...' resolves without an
   editable install.

Usage:
    $ python run.py events.bin -o events.txt --format text
"""
import sys
import os

current_dir: str = os.path.dirname(os.path.abspath(__file__))
src_path: str = os.path.join(current_dir, 'src')
sys.path.insert(0, src_path)

from spatialevents.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
