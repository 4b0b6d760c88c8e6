from __future__ import annotations

from classsync.main import run

if __name__ == "__main__":
    run()
