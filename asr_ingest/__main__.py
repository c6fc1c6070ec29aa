"""Package entry point for ``python -m asr_ingest``.

Delegates to the CLI's main() function.
"""

from asr_ingest.cli import main

if __name__ == "__main__":
    main()
