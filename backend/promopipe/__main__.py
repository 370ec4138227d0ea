"""CLI entry point for python -m promopipe"""
from promopipe.cli.commands import app

if __name__ == "__main__":
    app()
