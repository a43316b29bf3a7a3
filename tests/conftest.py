"""Pytest configuration for the test suite."""

import os
import sys

# Make the package under src/ and the tests helpers importable without installing
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(PROJECT_ROOT, 'src'))
sys.path.insert(0, PROJECT_ROOT)
