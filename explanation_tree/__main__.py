"""Entry point for `python -m explanation_tree`."""

from dotenv import load_dotenv

load_dotenv()

from explanation_tree.cli import main

if __name__ == "__main__":
    main()
