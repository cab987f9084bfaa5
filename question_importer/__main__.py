"""
Module entry point for: python -m question_importer

Allows running the importer directly as a module:
    python -m question_importer parse <document> [options]
    python -m question_importer import <document> --subject <id> [options]
    python -m question_importer serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
