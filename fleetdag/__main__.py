"""Entry point for running fleetdag as a module: ``python -m fleetdag``."""

from fleetdag.cli.main import main

if __name__ == "__main__":
    main()
