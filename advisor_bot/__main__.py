"""Allow running as `python -m advisor_bot`."""

from .cli import main

main()
