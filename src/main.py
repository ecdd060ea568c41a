"""Script de ejecución (`azst = main:main`).

- Punto de entrada del script de consola instalado.
- Permite ejecutar la CLI con `python -m main` desde `src/` durante desarrollo.
"""

from __future__ import annotations

import sys

# Windows terminals may default to cp1252; object names are UTF-8.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from cli.main import run


def main() -> None:
    run()


if __name__ == "__main__":
    main()
