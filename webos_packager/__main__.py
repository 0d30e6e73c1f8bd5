"""Package entry point for ``python -m webos_packager``.

WHY: Users run the packager as ``python -m webos_packager build ...``
without installing the console script.

RULES:
- This file must exist for ``python -m webos_packager`` to work
- All argument handling lives in cli.py
"""

from webos_packager.cli import main

if __name__ == "__main__":
    main()
