"""Entry point: python -m bookdragon.scripts"""

from bookdragon.scripts.cli import cli

if __name__ == "__main__":
    cli()
