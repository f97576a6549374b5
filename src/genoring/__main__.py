"""Allow running the CLI with 'python -m genoring'."""

from genoring.cli.main import main


if __name__ == "__main__":
    main()
