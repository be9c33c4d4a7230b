"""
Entry Point Script (Bootstrap)
==============================
Runs the driver from a source checkout without installing the package.

It modifies 'sys.path' so that imports like 'from hpheat.fea...' resolve
against the 'src' directory.

Usage:
    $ python run.py --vtk --no-view
"""
import sys
import os

# Add the 'src' directory to the Python path
current_dir: str = os.path.dirname(os.path.abspath(__file__))
src_path: str = os.path.join(current_dir, 'src')
sys.path.insert(0, src_path)

from hpheat.main import main

if __name__ == "__main__":
    sys.exit(main())
