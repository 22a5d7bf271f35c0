"""CLI interface for GitHub Explorer pipelines."""

import importlib

import click

# Map command names to their module:attribute for lazy import
_COMMANDS = {
    "pipeline": "github_explorer.cli.pipeline:pipeline",
    "schedule": "github_explorer.cli.schedules:schedule",
    "sitemap": "github_explorer.cli.sitemap:sitemap",
    "worker": "github_explorer.cli.worker:worker",
}


class LazyGroup(click.Group):
    """
    Lazy loading of CLI commands to avoid hard dependencies at top level.

    Each command group lives in its own module and is only imported when
    invoked.
    """

    def list_commands(self, ctx):
        return list(_COMMANDS.keys())

    def get_command(self, ctx, name):
        target = _COMMANDS.get(name)
        if not target:
            return None
        module_path, attr = target.split(":", 1)
        mod = importlib.import_module(module_path)
        return getattr(mod, attr)


@click.command(cls=LazyGroup)
def main():
    """GitHub Explorer pipelines CLI."""
    pass


if __name__ == "__main__":
    main()
