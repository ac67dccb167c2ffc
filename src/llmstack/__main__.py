"""llmstack CLI entry point.

This module enables running llmstack as:
    python -m llmstack <command>
"""

from llmstack.cli import main

if __name__ == "__main__":
    main()
