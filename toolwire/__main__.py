"""Entry point for python -m toolwire execution.

This module allows running toolwire as a module:
    python -m toolwire serve
    python -m toolwire health
    python -m toolwire diagnose
    python -m toolwire call echo --params '{"text": "hi"}'
"""

from toolwire.cli import run

if __name__ == "__main__":
    run()
