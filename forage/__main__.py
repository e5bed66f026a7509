"""``python -m forage`` — used by the detached loop daemon."""

from forage.main import main

main()
