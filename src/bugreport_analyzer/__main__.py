"""Module entrypoint.

Allows:
    python -m bugreport_analyzer
"""

from __future__ import annotations

from bugreport_analyzer.server.bugreport_server import main

if __name__ == "__main__":
    main()
