"""Root conftest.py - puts the project root on sys.path so ``tests.helpers`` imports."""
