"""Main CLI entry point for Brand Monitor."""

import click
from .commands import collection


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Brand Monitor - collect and export YouTube comments."""
    pass


main.add_command(collection.collect)
main.add_command(collection.resolve)
main.add_command(collection.configure)


if __name__ == "__main__":
    main()
