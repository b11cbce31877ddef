"""Allow ``python -m vmcli``."""

from .cli import main

main()
