"""
CLI entry point, when used as a module: `python -m steward`.

Useful for debugging in the IDEs (use the start-mode "Module", module "steward").
"""
from steward import cli

if __name__ == '__main__':
    cli.main()
